from mailwatch.sinks.base import CallbackSink, Sink, as_sink, deliver_to
from mailwatch.sinks.log import LoggingSink

__all__ = ["CallbackSink", "LoggingSink", "Sink", "as_sink", "deliver_to"]
