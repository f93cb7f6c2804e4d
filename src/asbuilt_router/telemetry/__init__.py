from asbuilt_router.telemetry.delivery_metrics import DELIVERY_EVENTS, DeliveryMetrics
from asbuilt_router.telemetry.tracing import generate_trace_id

__all__ = ["DELIVERY_EVENTS", "DeliveryMetrics", "generate_trace_id"]
