"""Entra ID SSO settings schemas.

Field aliases are the camelCase names the session channel speaks.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services.oidc import TENANT_ID_PATTERN
from app.services.permissions import Role

SECRET_SENTINEL = "********"


class OidcPublicConfig(BaseModel):
    """What an anonymous login page may learn about SSO."""

    enabled: bool


class OidcSettingsView(BaseModel):
    """Stored SSO settings as shown to administrators (secret masked)."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = Field(False, alias="oidcEntraEnabled")
    tenant_id: str = Field("", alias="oidcEntraTenantId")
    client_id: str = Field("", alias="oidcEntraClientId")
    client_secret: str = Field("", alias="oidcEntraClientSecret")
    allowed_groups: list[str] = Field(default_factory=list, alias="oidcEntraAllowedGroups")
    default_role: Role = Field(Role.VIEWER, alias="oidcEntraDefaultRole")
    auto_create_users: bool = Field(True, alias="oidcEntraAutoCreateUsers")


class OidcSettingsUpdate(BaseModel):
    """Schema for saving SSO settings.

    ``client_secret`` equal to the mask sentinel, empty or missing means
    "keep the stored secret".
    """

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = Field(False, alias="oidcEntraEnabled")
    tenant_id: str = Field("", alias="oidcEntraTenantId", max_length=255)
    client_id: str = Field("", alias="oidcEntraClientId", max_length=255)
    client_secret: str | None = Field(None, alias="oidcEntraClientSecret", max_length=1024)
    allowed_groups: list[str] = Field(default_factory=list, alias="oidcEntraAllowedGroups")
    default_role: Role = Field(Role.VIEWER, alias="oidcEntraDefaultRole")
    auto_create_users: bool = Field(True, alias="oidcEntraAutoCreateUsers")

    @field_validator("tenant_id", "client_id", mode="before")
    @classmethod
    def strip_identifier(cls, v):
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("tenant_id")
    @classmethod
    def validate_tenant_id(cls, v: str) -> str:
        if v and not TENANT_ID_PATTERN.match(v):
            raise ValueError("Tenant ID must be a directory GUID or domain name")
        return v

    @field_validator("allowed_groups", mode="before")
    @classmethod
    def normalize_groups(cls, v):
        """Accept a list or a comma-separated string; drop blanks and duplicates."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, list):
            raise ValueError("Allowed groups must be a list or comma-separated string")
        groups: list[str] = []
        for group in v:
            group = str(group).strip()
            if group and group not in groups:
                groups.append(group)
        return groups

    @field_validator("default_role", mode="before")
    @classmethod
    def validate_default_role(cls, v):
        if v is None or v == "":
            return Role.VIEWER
        role = Role.parse(v)
        if role is None:
            raise ValueError("Invalid default role")
        return role

    @property
    def has_new_secret(self) -> bool:
        return bool(self.client_secret) and self.client_secret != SECRET_SENTINEL
