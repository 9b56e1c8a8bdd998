from datetime import timezone

from marshmallow import EXCLUDE, Schema, fields, post_load

from models.token import TokenRecord


class TokenRecordSchema(Schema):
    """Wire format of a token record in the key-value store."""

    class Meta:
        unknown = EXCLUDE

    token_hash = fields.String(required=True, data_key="token")
    username = fields.String(required=True)
    expires_at = fields.AwareDateTime(
        required=True, default_timezone=timezone.utc, data_key="expires"
    )

    @post_load
    def _make_record(self, data, **kwargs):
        return TokenRecord(**data)
