# API endpoint handlers for the Scheduling Engine
from .methods import (
    routes,
    # Request utilities
    get_operations,
    get_request_body,
    get_query_params,
    parse_int_param,
    parse_bool_param,
    # Handler wrapper
    api_handler,
    InvalidParameterError,
)

__all__ = [
    "routes",
    "get_operations",
    "get_request_body",
    "get_query_params",
    "parse_int_param",
    "parse_bool_param",
    "api_handler",
    "InvalidParameterError",
]
