"""
coursegate/models/client.py

Description of the client the core is running for.

Stands in for the ambient browser globals (navigator, document.referrer,
the resolved timezone) so every signal the core uses is passed in explicitly.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class ClientContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_agent: str = ""
    language: Optional[str] = None
    platform: Optional[str] = None
    referrer: Optional[str] = None
    timezone: Optional[str] = None
    embedded_in: Optional[str] = None  # e.g. "telegram" when running inside a bot web app
