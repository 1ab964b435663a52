"""Date-scoped document numbering."""
import re
from datetime import date

import pytest

from erp_receiving.exceptions import ValidationError
from erp_receiving.services.document_sequence_service import DocumentSequenceService


class TestDocumentSequence:

    async def test_numbers_are_sequential(self, db):
        service = DocumentSequenceService(db)
        day = date(2026, 10, 19)

        first = await service.get_next_number("GRN", on=day)
        second = await service.get_next_number("GRN", on=day)

        assert first == "GRN-20261019-00001"
        assert second == "GRN-20261019-00002"

    async def test_prefixes_count_independently(self, db):
        service = DocumentSequenceService(db)
        day = date(2026, 10, 19)

        await service.get_next_number("GRN", on=day)
        assert await service.get_next_number("VR", on=day) == "VR-20261019-00001"

    async def test_counter_restarts_every_day(self, db):
        service = DocumentSequenceService(db)

        await service.get_next_number("INV", on=date(2026, 10, 19))
        assert await service.get_next_number("INV", on=date(2026, 10, 20)) == "INV-20261020-00001"

    async def test_today_format(self, db):
        number = await DocumentSequenceService(db).get_next_number("sr")
        assert re.fullmatch(r"SR-\d{8}-\d{5}", number)

    async def test_preview_does_not_consume(self, db):
        service = DocumentSequenceService(db)
        day = date(2026, 10, 19)

        assert await service.preview_next_number("PO", on=day) == "PO-20261019-00001"
        await service.get_next_number("PO", on=day)
        assert await service.preview_next_number("PO", on=day) == "PO-20261019-00002"
        assert await service.get_next_number("PO", on=day) == "PO-20261019-00002"

    async def test_unknown_prefix(self, db):
        with pytest.raises(ValidationError):
            await DocumentSequenceService(db).get_next_number("XYZ")
