from __future__ import annotations
from pydantic import BaseModel
from typing import Dict, Optional


class ToggleSimulationRequest(BaseModel):
    enabled: bool


class ConnectResponse(BaseModel):
    success: bool
    connected: bool
    connectionState: str
    message: str


class ToggleSimulationResponse(BaseModel):
    success: bool = True
    simulation: bool
    message: str


class IAQResponse(BaseModel):
    index: Optional[int]
    level: Optional[str]
    components: Dict[str, float] = {}
    status: Dict[str, str] = {}
    timestamp: Optional[str] = None
