"""
Test package for the long-haul harness.

Unit, property-based and timing tests for the event log, statistics
aggregation, telemetry loop, transport callbacks and CLI.
"""
