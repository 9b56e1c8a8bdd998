from marshmallow import EXCLUDE, Schema, ValidationError, fields, pre_load, validates


def _norm_username(v):
    return v.strip() if isinstance(v, str) else v


class UserLoginSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    username = fields.String(required=True)
    password = fields.String(required=True, load_only=True)

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "username" in data:
            data = dict(data)
            data["username"] = _norm_username(data["username"])
        return data

    @validates("username")
    def validate_username(self, value, **kwargs):
        if not value:
            raise ValidationError("Username is required.")

    @validates("password")
    def validate_password(self, value, **kwargs):
        if not value or not value.strip():
            raise ValidationError("Password is required.")


class RefreshTokenSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    refresh_token = fields.String(required=True)

    @validates("refresh_token")
    def validate_refresh_token(self, value, **kwargs):
        if not value or not value.strip():
            raise ValidationError("RefreshToken is required")


class LogoutSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    refresh_token = fields.String(load_default=None)


class TokenPairOutSchema(Schema):
    access_token = fields.String()
    refresh_token = fields.String()
    token_type = fields.Constant("bearer")
    access_token_expiration_utc = fields.AwareDateTime(attribute="access_token_expires_at")
    refresh_token_expiration_utc = fields.AwareDateTime(attribute="refresh_token_expires_at")


class UserOutSchema(Schema):
    id = fields.Integer()
    username = fields.String()
    role = fields.String()
