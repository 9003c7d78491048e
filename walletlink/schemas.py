from typing import Annotated, Any, Literal, Union

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from walletlink.core.addresses import normalize_wallet_address
from walletlink.errors import EventValidationError


WalletAddress = Annotated[str, AfterValidator(normalize_wallet_address)]
TxHash = Annotated[str, Field(pattern=r'^0x[0-9a-fA-F]{64}$')]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TelegramIdentity(BaseModel):
    """Login widget payload. Unknown fields are kept because they take part in the hash."""

    model_config = ConfigDict(extra='allow')

    id: int
    auth_date: int
    hash: str
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    photo_url: str | None = None

    def signed_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    @property
    def display_name(self) -> str:
        name = ' '.join(part for part in (self.first_name, self.last_name) if part).strip()
        return name or (self.username or str(self.id))


class ProofOfOwnership(BaseModel):
    message: str = Field(min_length=1)
    signature: str = Field(min_length=1)


class LinkChallengeRequest(_CamelModel):
    wallet_address: WalletAddress = Field(alias='walletAddress')
    telegram_id: int = Field(alias='telegramId', gt=0)


class ConnectRequest(_CamelModel):
    telegram_identity: TelegramIdentity = Field(alias='telegramIdentity')
    wallet_address: WalletAddress = Field(alias='walletAddress')
    proof_of_ownership: ProofOfOwnership = Field(alias='proofOfOwnership')


class DisconnectRequest(_CamelModel):
    wallet_address: WalletAddress = Field(alias='walletAddress')


class ConnectedData(_CamelModel):
    wallet_address: WalletAddress = Field(alias='walletAddress')
    telegram_id: int = Field(alias='telegramId', gt=0)
    timestamp: int | str | None = None


class DisconnectedData(_CamelModel):
    wallet_address: WalletAddress = Field(alias='walletAddress')


class RewardsDepositData(_CamelModel):
    receiver: WalletAddress
    minter: WalletAddress
    referral: WalletAddress
    verifier: WalletAddress
    transaction_hash: TxHash = Field(validation_alias=AliasChoices('transactionHash', 'txHash', 'transaction_hash'))


class ArtistClaim(_CamelModel):
    artist: WalletAddress
    quantity: int = Field(ge=0)


class DailyClaimData(_CamelModel):
    artists: list[ArtistClaim]


class ConnectedEvent(BaseModel):
    type: Literal['Connected']
    data: ConnectedData


class DisconnectedEvent(BaseModel):
    type: Literal['Disconnected']
    data: DisconnectedData


class RewardsDepositEvent(BaseModel):
    type: Literal['RewardsDeposit']
    data: RewardsDepositData


class DailyClaimEvent(BaseModel):
    type: Literal['DailyClaim']
    data: DailyClaimData


DispatchEvent = Annotated[
    Union[ConnectedEvent, DisconnectedEvent, RewardsDepositEvent, DailyClaimEvent],
    Field(discriminator='type'),
]

_event_adapter = TypeAdapter(DispatchEvent)


def parse_event(raw: Any) -> ConnectedEvent | DisconnectedEvent | RewardsDepositEvent | DailyClaimEvent:
    try:
        return _event_adapter.validate_python(raw)
    except ValidationError as exc:
        raise EventValidationError(
            [
                {'loc': [str(part) for part in err.get('loc', ())], 'msg': err.get('msg', ''), 'type': err.get('type', '')}
                for err in exc.errors()
            ]
        ) from exc
