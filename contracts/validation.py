"""
Validation library for SkyTrack wire contracts.

Provides Pydantic models for the websocket protocol spoken between the hub
and the tracker. Both sides validate with these models before acting on a
message.
"""

import math
from typing import Any, Optional, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, ValidationError, field_validator
from contracts.constants import (
    WS_MESSAGE_TYPE_PING,
    WS_MESSAGE_TYPE_SET_FILTER,
    WS_MESSAGE_TYPE_PONG,
    WS_MESSAGE_TYPE_CONNECTION_STATUS,
    WS_MESSAGE_TYPE_ERROR,
    WS_MESSAGE_TYPE_FLIGHTS,
    WS_MESSAGE_TYPE_FLIGHT_UPDATE,
)


FilterType = Literal["all", "commercial", "private", "cargo"]
FlightStatus = Literal["scheduled", "active", "landed", "cancelled", "diverted", "delayed"]


class WireModel(BaseModel):
    """Base for camelCase wire payloads; unknown keys are ignored."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============================================================================
# Aircraft State
# ============================================================================

class AircraftPosition(WireModel):
    """Last reported position and kinematics of an aircraft."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude_feet: Optional[float] = Field(
        None,
        validation_alias=AliasChoices("altitudeFeet", "altitude", "altitude_feet"),
        serialization_alias="altitudeFeet",
    )
    heading_degrees: Optional[float] = Field(
        None,
        validation_alias=AliasChoices("headingDegrees", "heading", "heading_degrees"),
        serialization_alias="headingDegrees",
    )
    ground_speed: Optional[float] = Field(None, alias="groundSpeed")
    vertical_speed: Optional[float] = Field(None, alias="verticalSpeed")
    timestamp: Optional[Union[str, float]] = None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def coerce_coordinate(cls, v):
        """Treat unparseable coordinates as missing rather than invalid."""
        if v is None or isinstance(v, bool):
            return None
        try:
            return float(v)
        except (TypeError, ValueError, OverflowError):
            return None

    @property
    def coordinates(self) -> Optional[tuple[float, float]]:
        """(latitude, longitude) if both resolve to a real point, else None."""
        lat, lng = self.latitude, self.longitude
        if lat is None or lng is None:
            return None
        if not (math.isfinite(lat) and math.isfinite(lng)):
            return None
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            return None
        return (lat, lng)


class AirlineRef(WireModel):
    name: Optional[str] = None
    icao: Optional[str] = None
    iata: Optional[str] = None


class AirportRef(WireModel):
    """Departure or arrival airport reference."""
    icao: Optional[str] = None
    iata: Optional[str] = None
    name: Optional[str] = None
    time: Optional[str] = None
    scheduled_time: Optional[str] = Field(None, alias="scheduledTime")
    estimated_time: Optional[str] = Field(None, alias="estimatedTime")


class AircraftState(WireModel):
    """One tracked aircraft as normalized by the hub."""
    id: str
    callsign: Optional[str] = None
    flight_number: Optional[str] = Field(None, alias="flightNumber")
    registration: Optional[str] = None
    aircraft_type: Optional[str] = Field(None, alias="aircraftType")
    airline: Optional[AirlineRef] = None
    departure: Optional[AirportRef] = None
    arrival: Optional[AirportRef] = None
    position: Optional[AircraftPosition] = None
    status: FlightStatus = "active"
    route: Optional[str] = None
    progress: Optional[float] = None
    squawk: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        """Accept numeric ids, reject blank ones."""
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("id must not be blank")
        return v

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def coordinates(self) -> Optional[tuple[float, float]]:
        if self.position is None:
            return None
        return self.position.coordinates

    def to_wire(self) -> dict:
        """Serialize with camelCase keys, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# Client -> Server Messages
# ============================================================================

class PingMessage(BaseModel):
    """Heartbeat probe."""
    type: Literal["ping"] = "ping"


class SetFilterMessage(BaseModel):
    """Subscription filter update."""
    type: Literal["setFilter"] = "setFilter"
    filter: FilterType


# ============================================================================
# Server -> Client Messages
# ============================================================================

class PongMessage(BaseModel):
    """Heartbeat acknowledgement."""
    type: Literal["pong"] = "pong"


class ConnectionStatusMessage(BaseModel):
    """Server-signaled throttle or degradation notice."""
    type: Literal["connectionStatus"] = "connectionStatus"
    status: str
    message: Optional[str] = None


class ErrorMessage(BaseModel):
    """Non-fatal server error notice."""
    type: Literal["error"] = "error"
    message: Optional[str] = None


class FlightBatchMessage(BaseModel):
    """
    Batch of aircraft states.

    Entries are kept raw here; each one is validated on its own when merged
    so that one bad entry does not discard the rest of the batch.
    """
    type: Literal["flights", "flightUpdate"] = "flightUpdate"
    flights: Any = None
    data: Any = None
    timestamp: Optional[str] = None

    @property
    def batch(self) -> Any:
        """The batch payload, whichever key carried it."""
        return self.flights if self.flights is not None else self.data


CLIENT_MESSAGE_MODELS = {
    WS_MESSAGE_TYPE_PING: PingMessage,
    WS_MESSAGE_TYPE_SET_FILTER: SetFilterMessage,
}

SERVER_MESSAGE_MODELS = {
    WS_MESSAGE_TYPE_PONG: PongMessage,
    WS_MESSAGE_TYPE_CONNECTION_STATUS: ConnectionStatusMessage,
    WS_MESSAGE_TYPE_ERROR: ErrorMessage,
    WS_MESSAGE_TYPE_FLIGHTS: FlightBatchMessage,
    WS_MESSAGE_TYPE_FLIGHT_UPDATE: FlightBatchMessage,
}


# ============================================================================
# Validation Functions
# ============================================================================

def validate_aircraft_state(data: Any) -> tuple[bool, Optional[AircraftState], Optional[str]]:
    """
    Validate a single AircraftState entry.

    Returns:
        (is_valid, state_or_none, error_message_or_none)
    """
    try:
        state = AircraftState.model_validate(data)
        return True, state, None
    except (ValidationError, ValueError, TypeError, OverflowError) as e:
        return False, None, str(e)


def _validate_tagged(data: Any, models: dict) -> tuple[bool, Optional[BaseModel], Optional[str]]:
    if not isinstance(data, dict):
        return False, None, f"Message must be an object, got {type(data).__name__}"
    msg_type = data.get("type")
    model = models.get(msg_type)
    if model is None:
        return False, None, f"Unrecognized message type: {msg_type!r}"
    try:
        message = model.model_validate(data)
        return True, message, None
    except ValidationError as e:
        return False, None, str(e)


def validate_server_message(data: Any) -> tuple[bool, Optional[BaseModel], Optional[str]]:
    """
    Validate a server -> client message against its tagged model.

    Returns:
        (is_valid, message_or_none, error_message_or_none)
    """
    return _validate_tagged(data, SERVER_MESSAGE_MODELS)


def validate_client_message(data: Any) -> tuple[bool, Optional[BaseModel], Optional[str]]:
    """
    Validate a client -> server message against its tagged model.

    Returns:
        (is_valid, message_or_none, error_message_or_none)
    """
    return _validate_tagged(data, CLIENT_MESSAGE_MODELS)
