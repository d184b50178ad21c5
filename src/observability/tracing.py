"""
OpenTelemetry tracing 配置。

提供全局 tracer 供业务代码使用：
    from src.observability import tracer
    with tracer.start_as_current_span("bulk_insert.insert"):
        ...

默认不导出；GRID_TRACE_CONSOLE=1 时输出到控制台（生产环境可替换为 OTLP exporter）。
"""

import os

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource

SERVICE_NAME = "grid-rowstore"
SERVICE_VERSION = "0.1.0"

_resource = Resource.create({"service.name": SERVICE_NAME, "service.version": SERVICE_VERSION})

_provider = TracerProvider(resource=_resource)

if os.getenv("GRID_TRACE_CONSOLE", "0") == "1":
    _provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

trace.set_tracer_provider(_provider)

tracer = trace.get_tracer(SERVICE_NAME, SERVICE_VERSION)
