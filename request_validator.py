#!/usr/bin/env python3

import logging
from typing import Optional, Dict, Any, List, Tuple
from pydantic import BaseModel, Field, ValidationError, field_validator
from models import LogEntry

logger = logging.getLogger(__name__)


class LogRequest(BaseModel):
    log_kind_name: str = Field(..., min_length=1, max_length=30, description="Folder per log kind")
    sub_kind_name: str = Field(..., min_length=1, max_length=30, description="Sheet per sub kind")
    sub_sub_kind_name: str = Field(..., min_length=1, max_length=30, description="Free-form tag")
    log_text: str = Field(..., min_length=1, max_length=150, description="Log message")
    unix_time: str = Field(..., pattern=r"^\d{1,11}$", description="Event time, epoch seconds")

    @field_validator("unix_time", mode="before")
    @classmethod
    def accept_integer_time(cls, value):
        # JSON clients send epochs as numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class LogRequestValidator:
    """Turn inbound request payloads into log entries or validation errors"""

    def validate(
        self, payload: Optional[Dict[str, Any]]
    ) -> Tuple[Optional[LogEntry], Optional[List[Dict[str, str]]]]:
        """
        Returns:
            (entry, None) when the payload is valid, (None, errors) otherwise
        """
        if not isinstance(payload, dict):
            errors = [{"field": "body", "message": "Expected an object", "type": "invalid_body"}]
            logger.error(f"Invalid Input: {errors}")
            return None, errors

        try:
            request = LogRequest.model_validate(payload)
        except ValidationError as e:
            errors = [
                {
                    "field": ".".join(str(part) for part in error["loc"]) or "body",
                    "message": error["msg"],
                    "type": error["type"],
                }
                for error in e.errors()
            ]
            logger.error(f"Invalid Input: {errors}")
            return None, errors

        return LogEntry(**request.model_dump()), None
