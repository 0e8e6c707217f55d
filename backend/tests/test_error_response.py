import logging
import pytest
from fastapi import HTTPException

from marketplace.utils.errors import error_response


def test_error_response_logs(caplog):
    caplog.set_level(logging.ERROR, logger="marketplace.utils.errors")
    with pytest.raises(HTTPException) as exc_info:
        raise error_response("Invalid", {"field": "bad"})
    assert exc_info.value.status_code == 422
    assert exc_info.value.detail == {"message": "Invalid", "field_errors": {"field": "bad"}}
    assert any(
        "Invalid" in r.getMessage() and "'field': 'bad'" in r.getMessage()
        for r in caplog.records
    )
