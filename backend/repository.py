"""Typed reads shared by the routers and services."""
from typing import List, Optional, Union

from constants import CONTAINER
from database import CosmosDBService
from error_utils import NotFoundError
from models import Student, Teacher, Test, UserRole, parse_user


async def load_test(db: CosmosDBService, test_id: str) -> Test:
    document = await db.read_item(CONTAINER["TESTS"], test_id)
    if document is None:
        raise NotFoundError("Test not found", code="test_not_found")
    return Test.model_validate(document)


async def load_roster(db: CosmosDBService) -> List[Student]:
    """Every stored student, whatever their approval status."""
    documents = await db.find_many(CONTAINER["USERS"], {"role": UserRole.STUDENT.value})
    return [parse_user(doc) for doc in documents]


async def find_user_by_email(db: CosmosDBService, email: str) -> Optional[Union[Teacher, Student]]:
    document = await db.find_one(CONTAINER["USERS"], {"email": email})
    return parse_user(document) if document else None
