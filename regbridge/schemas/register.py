from pydantic import BaseModel, ConfigDict


class RegisterIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    firstName: str | None = None
    lastName: str | None = None
    phone: str | int | None = None
    siteId: str | int | None = None
    titleRole: str | None = None
    password: str | None = None
    # update-only: never create a new account
    update: bool = False


class RegisterOut(BaseModel):
    ok: bool
    action: str | None = None
    customerId: int | str | None = None
    email: str | None = None
    siteId: str | None = None
    password: str | None = None

    error: str | None = None
    field: str | None = None
    code: str | None = None


class SiteIdValidationOut(BaseModel):
    valid: bool
    accountName: str | None = None
    accountId: str | None = None
    error: str | None = None
