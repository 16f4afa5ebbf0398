"""
SCHEMA TESTS

Response models are built straight from ORM objects.
"""
import importlib
import uuid
import warnings
from datetime import datetime, timezone
from types import SimpleNamespace

from pydantic.warnings import PydanticDeprecatedSince20

import schemas


class TestSchemas:

    def test_response_models_read_attributes(self):
        now = datetime(2026, 3, 2, tzinfo=timezone.utc)
        note = SimpleNamespace(
            id=uuid.uuid4(), promise_id=uuid.uuid4(), user_id=uuid.uuid4(), note_text="Keep going", created_at=now
        )

        response = schemas.NoteResponse.model_validate(note)

        assert response.note_text == "Keep going"
        assert schemas.PromiseResponse.model_config["from_attributes"] is True

    def test_module_defines_models_without_deprecation_warnings(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            importlib.reload(schemas)

        assert not [w for w in caught if issubclass(w.category, PydanticDeprecatedSince20)]
