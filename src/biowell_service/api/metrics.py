"""Health metric endpoints."""

from typing import Annotated, Any

from litestar import Router, get, post
from litestar.exceptions import ValidationException
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED

from biowell_service.schemas.metrics import MetricType
from biowell_service.services.container import ServiceContainer


@get("/users/{user_id:str}/metrics", status_code=HTTP_200_OK)
async def list_metrics(
    user_id: str,
    services: ServiceContainer,
    metric_type: Annotated[MetricType | None, Parameter(query="type")] = None,
    limit: Annotated[int, Parameter(query="limit", default=50, ge=1, le=1000)] = 50,
) -> list[dict[str, Any]]:
    """Most recent observations, newest first.

    Seeds synthetic history on first read when the user has no data.
    """
    records = await services.metrics.get_metrics(user_id, metric_type, limit)
    return [r.to_api_dict() for r in records]


@get("/users/{user_id:str}/metrics/summary", status_code=HTTP_200_OK)
async def get_metric_summary(user_id: str, services: ServiceContainer) -> dict[str, Any]:
    """Latest value, average, range and trend per metric type."""
    summaries = await services.metrics.summary(user_id)
    return {name: s.model_dump(mode="json") for name, s in summaries.items()}


@get("/users/{user_id:str}/metrics/{metric_type:str}/latest", status_code=HTTP_200_OK)
async def get_latest_metric(
    user_id: str,
    metric_type: str,
    services: ServiceContainer,
) -> dict[str, Any] | None:
    """Newest observation of one metric type."""
    try:
        kind = MetricType(metric_type)
    except ValueError as e:
        raise ValidationException(f"Unknown metric type: {metric_type}") from e
    record = await services.metrics.latest(user_id, kind)
    return record.to_api_dict() if record else None


@post("/users/{user_id:str}/metrics/seed", status_code=HTTP_201_CREATED)
async def seed_metrics(
    user_id: str,
    services: ServiceContainer,
    seed: Annotated[int | None, Parameter(query="seed")] = None,
) -> dict[str, Any]:
    """Synthesize and store wearable and CGM history."""
    written = await services.metrics.seed_history(user_id, seed=seed)
    return {
        "user_id": user_id,
        "records_written": written,
        "failed_chunks": services.batch_writer.last_failed_chunks,
    }


metrics_router = Router(
    path="/",
    route_handlers=[list_metrics, get_metric_summary, get_latest_metric, seed_metrics],
)
