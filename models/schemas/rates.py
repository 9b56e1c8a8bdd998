from datetime import timezone

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    pre_load,
    validate,
    validates,
    validates_schema,
)

from models.rates import HistoricalSnapshot, RateSnapshot
from models.schemas.common import parse_symbols, validate_currency_code, validate_symbols


# ---------------------------------------------------------------------------
# Snapshot codecs: decode upstream payloads and (de)serialize cache entries
# ---------------------------------------------------------------------------

class RateSnapshotSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    base = fields.String(required=True)
    rates = fields.Dict(
        keys=fields.String(), values=fields.Decimal(as_string=True), required=True
    )
    date = fields.Date(allow_none=True)
    expires_at = fields.AwareDateTime(default_timezone=timezone.utc, allow_none=True)

    @post_load
    def _make_snapshot(self, data, **kwargs):
        return RateSnapshot(**data)


class HistoricalSnapshotSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    base = fields.String(required=True)
    rates = fields.Dict(
        keys=fields.String(),
        values=fields.Dict(keys=fields.String(), values=fields.Decimal(as_string=True)),
        required=True,
    )
    start_date = fields.Date(allow_none=True)
    end_date = fields.Date(allow_none=True)
    expires_at = fields.AwareDateTime(default_timezone=timezone.utc, allow_none=True)

    @post_load
    def _make_snapshot(self, data, **kwargs):
        return HistoricalSnapshot(**data)


# ---------------------------------------------------------------------------
# Request query schemas
# ---------------------------------------------------------------------------

class _SymbolsQueryMixin:
    @pre_load
    def _split_symbols(self, data, **kwargs):
        data = dict(data)
        if "symbols" in data:
            symbols = parse_symbols(data["symbols"])
            if symbols is None:
                data.pop("symbols")
            else:
                data["symbols"] = symbols
        return data

    @validates("base")
    def _validate_base(self, value, **kwargs):
        validate_currency_code(value, "base", "Base currency cannot be empty or whitespace.")

    @validates("symbols")
    def _validate_symbols(self, value, **kwargs):
        validate_symbols(value)


class LatestQuerySchema(_SymbolsQueryMixin, Schema):
    class Meta:
        unknown = EXCLUDE

    base = fields.String(load_default=None)
    provider = fields.String(load_default=None)
    symbols = fields.List(fields.String(), load_default=None)


class HistoricalQuerySchema(_SymbolsQueryMixin, Schema):
    class Meta:
        unknown = EXCLUDE

    start_date = fields.Date(required=True)
    end_date = fields.Date(required=True)
    base = fields.String(load_default=None)
    provider = fields.String(load_default=None)
    symbols = fields.List(fields.String(), load_default=None)
    page = fields.Integer(load_default=1)
    page_size = fields.Integer(load_default=None)

    def __init__(self, *, max_range_days=365, max_page_size=100, **kwargs):
        super().__init__(**kwargs)
        self.max_range_days = max_range_days
        self.max_page_size = max_page_size

    @validates("page")
    def _validate_page(self, value, **kwargs):
        if value < 1:
            raise ValidationError("Page must be greater than 0.")

    @validates("page_size")
    def _validate_page_size(self, value, **kwargs):
        if value is not None and not 1 <= value <= self.max_page_size:
            raise ValidationError(f"PageSize must be between 1 and {self.max_page_size}.")

    @validates_schema
    def _validate_range(self, data, **kwargs):
        start, end = data.get("start_date"), data.get("end_date")
        if start is None or end is None:
            return
        if end < start:
            raise ValidationError("End date must be after start date.", field_name="end_date")
        if (end - start).days > self.max_range_days:
            raise ValidationError(
                f"Date range cannot exceed {self.max_range_days} days.", field_name="end_date"
            )


class ConvertQuerySchema(Schema):
    class Meta:
        unknown = EXCLUDE

    from_currency = fields.String(required=True, data_key="from")
    to_currency = fields.String(required=True, data_key="to")
    amount = fields.Decimal(
        required=True,
        validate=validate.Range(min=0, min_inclusive=False, error="Amount cannot be zero or negative."),
    )
    provider = fields.String(load_default=None)

    @validates("from_currency")
    def _validate_from(self, value, **kwargs):
        validate_currency_code(value, "from", "Source currency cannot be empty or whitespace.")

    @validates("to_currency")
    def _validate_to(self, value, **kwargs):
        validate_currency_code(value, "to", "Target currency cannot be empty or whitespace.")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class LatestRatesOutSchema(Schema):
    base = fields.String()
    date = fields.Date(allow_none=True)
    rates = fields.Dict(keys=fields.String(), values=fields.Float())


class HistoricalPageOutSchema(Schema):
    base = fields.String()
    start_date = fields.Date(allow_none=True)
    end_date = fields.Date(allow_none=True)
    rates = fields.Dict(
        keys=fields.String(),
        values=fields.Dict(keys=fields.String(), values=fields.Float()),
    )
    current_page = fields.Integer()
    page_size = fields.Integer()
    total_pages = fields.Integer()
    total_records = fields.Integer()


class ConversionOutSchema(Schema):
    from_currency = fields.String(data_key="from")
    to_currency = fields.String(data_key="to")
    amount = fields.Decimal(as_string=True)
    result = fields.Decimal(as_string=True)
