"""
Services.

Business logic layer: graph materialization, aggregation, caching,
event handling and housekeeping.
"""
