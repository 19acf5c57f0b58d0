"""Developer entity mirroring the Apigee Edge developer resource."""
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic.alias_generators import to_camel


class DeveloperStatus(StrEnum):
    """Developer status on Apigee Edge."""

    ACTIVE = "active"
    INACTIVE = "inactive"


# Fields owned by Apigee Edge: never sent on create/update.
READ_ONLY_FIELDS = {"apps", "companies", "organization_name", "created_at", "last_modified_at"}

# Fields that only exist locally.
LOCAL_FIELDS = {"owner_id"}


class Developer(BaseModel):
    """
    An API developer account.

    A developer is addressable by two ids on Apigee Edge: the email address and
    the developer id (UUID). The email is the primary id (`id`); the developer
    id is assigned by Apigee Edge on create and never changes afterwards.

    Example API payload:
        {
            "email": "alice@example.com",
            "developerId": "1b2c3d4e-...",
            "firstName": "Alice",
            "lastName": "Doe",
            "userName": "alice",
            "status": "active",
            "attributes": [{"name": "team", "value": "core"}],
            "apps": ["alice-app"],
            "companies": [],
            "organizationName": "my-org",
            "createdAt": 1546300800000,
            "lastModifiedAt": 1546300800000
        }

    Renaming a persisted developer (assigning a new email) keeps the email
    Apigee Edge knows it by in a shadow field until reset_original_email() is
    called, so the update call can still address the record.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    email: str
    developer_id: str | None = None
    first_name: str = ""
    last_name: str = ""
    user_name: str = ""
    status: DeveloperStatus = DeveloperStatus.ACTIVE
    attributes: dict[str, str] = Field(default_factory=dict)
    apps: list[str] = Field(default_factory=list)
    companies: list[str] = Field(default_factory=list)
    organization_name: str | None = None
    created_at: int | None = None
    last_modified_at: int | None = None
    owner_id: int | None = None

    _original_email: str | None = PrivateAttr(default=None)
    _is_new: bool = PrivateAttr(default=True)

    @field_validator("attributes", mode="before")
    @classmethod
    def normalize_attributes(cls, v: Any) -> Any:
        """Accept the API's [{"name": ..., "value": ...}] list form."""
        if isinstance(v, list):
            return {item["name"]: item.get("value", "") for item in v}
        return v

    def __setattr__(self, name: str, value: Any) -> None:
        if (
            name == "email"
            and not self._is_new
            and self._original_email is None
            and value != self.email
        ):
            self._original_email = self.email
        super().__setattr__(name, value)

    @property
    def id(self) -> str:
        """Primary id: the email address."""
        return self.email

    @property
    def uuid(self) -> str | None:
        """Secondary id: the developer id."""
        return self.developer_id

    @property
    def original_email(self) -> str | None:
        """Email before an unsaved rename, None when not renamed."""
        return self._original_email

    @property
    def original_id(self) -> str:
        """The id Apigee Edge currently knows this developer by."""
        return self._original_email or self.email

    def reset_original_email(self) -> None:
        """Forget the pre-rename email (once the rename has been saved)."""
        self._original_email = None

    def is_new(self) -> bool:
        """Whether the developer has not been created on Apigee Edge yet."""
        return self._is_new

    def enforce_is_new(self, value: bool = True) -> None:
        """Mark the developer as new (create on save) or existing (update on save)."""
        self._is_new = value

    def get_cache_tags(self) -> list[str]:
        """Cache tags identifying this developer."""
        return [f"developer:{self.email}"]

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Developer":
        """Build an existing developer from an API response payload."""
        developer = cls.model_validate(data)
        developer.enforce_is_new(False)
        return developer

    def to_api(self) -> dict[str, Any]:
        """Build the create/update request payload."""
        payload = self.model_dump(
            by_alias=True,
            exclude=READ_ONLY_FIELDS | LOCAL_FIELDS,
            exclude_none=True,
        )
        payload["attributes"] = [
            {"name": name, "value": value} for name, value in self.attributes.items()
        ]
        return payload

    def apply_remote(self, remote: "Developer") -> None:
        """Copy the fields owned by Apigee Edge from a remote response onto this instance."""
        for name in type(self).model_fields:
            if name in LOCAL_FIELDS:
                continue
            # Bypass rename tracking: this is the remote state, not a local edit.
            super().__setattr__(name, getattr(remote, name))
