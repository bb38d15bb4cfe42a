"""
Azure Cosmos DB database service layer

This module provides abstraction for Azure Cosmos DB operations,
with MongoDB-style helpers (find_one / find_many) and RU monitoring.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional
from azure.cosmos import ContainerProxy, DatabaseProxy, PartitionKey
from azure.core import MatchConditions
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosResourceNotFoundError,
    CosmosHttpResponseError,
    CosmosResourceExistsError,
)
from fastapi import HTTPException, Request
import logging
from constants import COLLECTIONS

logger = logging.getLogger(__name__)


class CosmosDBMetrics:
    """Class to track Cosmos DB metrics and performance"""

    def __init__(self):
        self.total_request_charge = 0.0
        self.operation_count = 0
        self.operation_times = []

    def record_operation(self, request_charge: float, duration_ms: float, operation_type: str):
        """Record an operation's metrics"""
        self.total_request_charge += request_charge
        self.operation_count += 1
        self.operation_times.append(duration_ms)

        logger.info(f"Cosmos DB {operation_type}: {request_charge} RU, {duration_ms:.2f}ms")

    def get_average_ru_per_operation(self) -> float:
        """Get average RU consumption per operation"""
        return self.total_request_charge / self.operation_count if self.operation_count > 0 else 0.0

    def get_average_duration(self) -> float:
        """Get average operation duration in milliseconds"""
        return sum(self.operation_times) / len(self.operation_times) if self.operation_times else 0.0

    def reset(self):
        self.total_request_charge = 0.0
        self.operation_count = 0
        self.operation_times = []


# Global metrics instance for monitoring
cosmos_metrics = CosmosDBMetrics()


class CosmosRetryConfig:
    """Configuration for Cosmos DB retry logic (reads and queries only)"""
    MAX_RETRIES = 3
    INITIAL_DELAY = 1.0  # seconds
    MAX_DELAY = 10.0     # seconds
    BACKOFF_MULTIPLIER = 2.0

    # Throttling and gateway unavailability
    RETRYABLE_STATUS_CODES = {429, 503, 408}


def _request_charge(result: Any) -> float:
    if hasattr(result, 'headers') and 'x-ms-request-charge' in result.headers:
        return float(result.headers['x-ms-request-charge'])
    if hasattr(result, 'request_charge'):
        return float(result.request_charge)
    return 0.0


async def cosmos_retry_wrapper(operation, *args, operation_type: str = "unknown", **kwargs):
    """
    Wrapper for idempotent Cosmos DB operations with exponential backoff retry logic.
    Writes are never routed through here: a retried create could report a
    conflict for an item the first attempt already stored.
    """
    config = CosmosRetryConfig()
    last_exception = None
    start_time = time.time()

    for attempt in range(config.MAX_RETRIES + 1):
        try:
            result = await operation(*args, **kwargs)

            duration_ms = (time.time() - start_time) * 1000
            request_charge = _request_charge(result)
            cosmos_metrics.record_operation(request_charge, duration_ms, operation_type)

            if request_charge > 50.0:
                logger.warning(f"High RU operation: {operation_type} consumed {request_charge} RU")

            return result

        except CosmosResourceNotFoundError:
            raise
        except CosmosHttpResponseError as e:
            last_exception = e
            status_code = e.status_code

            if status_code not in config.RETRYABLE_STATUS_CODES or attempt == config.MAX_RETRIES:
                logger.error(f"Cosmos DB operation failed after {attempt + 1} attempts: {e}")
                raise

            delay = min(
                config.INITIAL_DELAY * (config.BACKOFF_MULTIPLIER ** attempt),
                config.MAX_DELAY
            )

            # For throttling (429), respect the retry-after header if present
            if status_code == 429:
                retry_after = e.headers.get('x-ms-retry-after-ms')
                if retry_after:
                    delay = max(delay, float(retry_after) / 1000.0)

            logger.warning(f"Cosmos DB operation failed (attempt {attempt + 1}/{config.MAX_RETRIES + 1}): {e}. Retrying in {delay}s")
            await asyncio.sleep(delay)

    raise last_exception


class CosmosDBService:
    """Service layer for Azure Cosmos DB operations"""

    def __init__(self, database_client: DatabaseProxy):
        self.database_client = database_client
        self._containers = {}

    def get_container(self, container_name: str) -> ContainerProxy:
        """Get or create container client"""
        if container_name not in self._containers:
            self._containers[container_name] = self.database_client.get_container_client(container_name)
        return self._containers[container_name]

    async def ensure_containers_exist(self):
        """Ensure required containers exist with proper partition keys, unique keys and indexing."""
        containers_config = {
            "TESTS": {"index_policy": {
                "indexingMode": "consistent",
                "automatic": True,
                "includedPaths": [{"path": "/*"}],
                "excludedPaths": [{"path": "/questions/*"}]
            }},
            # One submission per student per test, enforced by the store inside each test partition
            "SUBMISSIONS": {"unique_keys": ["/student_id"], "index_policy": {
                "indexingMode": "consistent",
                "automatic": True,
                "includedPaths": [{"path": "/*"}],
                "excludedPaths": [{"path": "/answers/*"}]
            }},
            "USERS": {},
        }
        for key, cfg in containers_config.items():
            container_name = COLLECTIONS[key]["name"]
            pk_path = "/" + COLLECTIONS[key]["pk_field"]
            try:
                container = self.database_client.get_container_client(container_name)
                container.read()
                logger.info(f"Container '{container_name}' already exists")
            except CosmosResourceNotFoundError:
                create_kwargs = {
                    "id": container_name,
                    "partition_key": PartitionKey(path=pk_path),
                }
                if "unique_keys" in cfg:
                    create_kwargs["unique_key_policy"] = {
                        "uniqueKeys": [{"paths": [path]} for path in cfg["unique_keys"]]
                    }
                if "index_policy" in cfg:
                    create_kwargs["indexing_policy"] = cfg["index_policy"]
                try:
                    self.database_client.create_container(**create_kwargs)
                    logger.info(f"Created container '{container_name}' with pk '{pk_path}'")
                except CosmosHttpResponseError as e:
                    logger.error(f"Failed to create container '{container_name}': {e}")
                    raise

    # CRUD Operations

    async def create_item(self, container_name: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new item; raises CosmosResourceExistsError when the id or a unique key is taken"""
        container = self.get_container(container_name)
        start_time = time.time()
        try:
            response = container.create_item(body=item)
            cosmos_metrics.record_operation(_request_charge(response), (time.time() - start_time) * 1000, f"create:{container_name}")
            logger.info(f"Created item in '{container_name}': {response.get('id')}")
            return response
        except CosmosResourceExistsError:
            logger.warning(f"Item already exists in '{container_name}': {item.get('id')}")
            raise
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to create item in '{container_name}': {e}")
            raise

    async def read_item(self, container_name: str, item_id: str, partition_key: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Read a specific item by ID and partition key (defaults to the id)"""
        container = self.get_container(container_name)

        async def _read_operation():
            return container.read_item(item=item_id, partition_key=partition_key if partition_key is not None else item_id)

        try:
            return await cosmos_retry_wrapper(_read_operation, operation_type=f"read:{container_name}")
        except CosmosResourceNotFoundError:
            return None
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to read item '{item_id}' from '{container_name}': {e}")
            raise

    async def replace_item(self, container_name: str, item: Dict[str, Any],
                           etag: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Replace an existing item; None when it is gone.

        With an ``etag`` the write only lands if the stored item is unchanged since it was
        read, otherwise CosmosAccessConditionFailedError (412) is raised.
        """
        container = self.get_container(container_name)
        conditions = {"etag": etag, "match_condition": MatchConditions.IfNotModified} if etag else {}
        start_time = time.time()
        try:
            response = container.replace_item(item=item["id"], body=item, **conditions)
            cosmos_metrics.record_operation(_request_charge(response), (time.time() - start_time) * 1000, f"replace:{container_name}")
            logger.info(f"Replaced item in '{container_name}': {item['id']}")
            return response
        except CosmosResourceNotFoundError:
            return None
        except CosmosAccessConditionFailedError:
            logger.warning(f"Item '{item['id']}' in '{container_name}' changed since it was read")
            raise
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to replace item in '{container_name}': {e}")
            raise

    async def delete_item(self, container_name: str, item_id: str, partition_key: Optional[str] = None) -> bool:
        """Delete an item by ID and partition key (defaults to the id)"""
        container = self.get_container(container_name)
        try:
            container.delete_item(item=item_id, partition_key=partition_key if partition_key is not None else item_id)
            logger.info(f"Deleted item '{item_id}' from '{container_name}'")
            return True
        except CosmosResourceNotFoundError:
            return False
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to delete item '{item_id}' from '{container_name}': {e}")
            raise

    async def query_items(self, container_name: str, query: str, parameters: Optional[List[Dict[str, Any]]] = None,
                          cross_partition: bool = True) -> List[Dict[str, Any]]:
        """Query items using SQL syntax"""
        container = self.get_container(container_name)

        async def _query_operation():
            return list(container.query_items(
                query=query,
                parameters=parameters or [],
                enable_cross_partition_query=cross_partition
            ))

        try:
            return await cosmos_retry_wrapper(_query_operation, operation_type=f"query:{container_name}")
        except CosmosHttpResponseError as e:
            logger.error(f"Query failed in '{container_name}': {e}")
            raise

    @staticmethod
    def _where_clause(filter_dict: Optional[Dict[str, Any]]):
        conditions = []
        parameters = []
        for key, value in (filter_dict or {}).items():
            if key == "_id":
                key = "id"  # Map MongoDB _id to Cosmos DB id
            param_name = f"@{key}"
            conditions.append(f"c.{key} = {param_name}")
            parameters.append({"name": param_name, "value": value})
        clause = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        return clause, parameters

    async def find_one(self, container_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Find one item matching the filter (MongoDB-style compatibility)"""
        if not filter_dict:
            return None
        clause, parameters = self._where_clause(filter_dict)
        results = await self.query_items(container_name, f"SELECT * FROM c{clause}", parameters)
        return results[0] if results else None

    async def find_many(self, container_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                        limit: Optional[int] = None, order_by: Optional[str] = None,
                        descending: bool = False) -> List[Dict[str, Any]]:
        """Find multiple items matching the filter (MongoDB-style compatibility)"""
        clause, parameters = self._where_clause(filter_dict)
        query = f"SELECT * FROM c{clause}"
        if order_by:
            query += f" ORDER BY c.{order_by} {'DESC' if descending else 'ASC'}"
        if limit:
            query += f" OFFSET 0 LIMIT {int(limit)}"
        return await self.query_items(container_name, query, parameters)

    async def count_items(self, container_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        """Count items in container with optional filter"""
        clause, parameters = self._where_clause(filter_dict)
        results = await self.query_items(container_name, f"SELECT VALUE COUNT(1) FROM c{clause}", parameters)
        return results[0] if results else 0

    # Monitoring

    def get_metrics(self) -> Dict[str, Any]:
        """Get current performance metrics"""
        return {
            "total_request_charge": cosmos_metrics.total_request_charge,
            "operation_count": cosmos_metrics.operation_count,
            "average_ru_per_operation": cosmos_metrics.get_average_ru_per_operation(),
            "average_duration_ms": cosmos_metrics.get_average_duration()
        }

    async def get_container_statistics(self, container_name: str) -> Dict[str, Any]:
        """Get container statistics and performance information"""
        container = self.get_container(container_name)
        properties = container.read()
        document_count = await self.count_items(container_name)
        return {
            "container_name": container_name,
            "document_count": document_count,
            "partition_key": properties.get("partitionKey", {}).get("paths", []),
            "unique_keys": properties.get("uniqueKeyPolicy", {}).get("uniqueKeys", []),
        }


# Dependency helpers

async def get_cosmosdb_service(database_client: DatabaseProxy) -> CosmosDBService:
    """Get initialized CosmosDB service with containers"""
    service = CosmosDBService(database_client)
    await service.ensure_containers_exist()
    return service


def database_client_from(request: Request) -> Optional[DatabaseProxy]:
    """The database handle the app lifespan stored on app.state, if any"""
    return getattr(request.app.state, "database_client", None)


async def get_cosmosdb(request: Request) -> CosmosDBService:
    """FastAPI dependency: the database service, or 503 when running without a database"""
    database_client = database_client_from(request)
    if database_client is None:
        raise HTTPException(status_code=503, detail="Database not available. Check connection configuration.")
    return CosmosDBService(database_client)
