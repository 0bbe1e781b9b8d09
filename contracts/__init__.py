"""
SkyTrack Contracts Package

Provides shared constants and validation for the websocket wire contract.
"""

from contracts.constants import *
from contracts.validation import (
    AircraftPosition,
    AircraftState,
    AirlineRef,
    AirportRef,
    PingMessage,
    SetFilterMessage,
    PongMessage,
    ConnectionStatusMessage,
    ErrorMessage,
    FlightBatchMessage,
    validate_aircraft_state,
    validate_server_message,
    validate_client_message,
)

__all__ = [
    # Constants
    "WS_MESSAGE_TYPE_PING",
    "WS_MESSAGE_TYPE_SET_FILTER",
    "WS_MESSAGE_TYPE_PONG",
    "WS_MESSAGE_TYPE_CONNECTION_STATUS",
    "WS_MESSAGE_TYPE_ERROR",
    "WS_MESSAGE_TYPE_FLIGHTS",
    "WS_MESSAGE_TYPE_FLIGHT_UPDATE",
    "FILTER_TYPES",
    "DEGRADED_CONNECTION_STATUSES",
    # Models
    "AircraftPosition",
    "AircraftState",
    "AirlineRef",
    "AirportRef",
    "PingMessage",
    "SetFilterMessage",
    "PongMessage",
    "ConnectionStatusMessage",
    "ErrorMessage",
    "FlightBatchMessage",
    # Validators
    "validate_aircraft_state",
    "validate_server_message",
    "validate_client_message",
]
