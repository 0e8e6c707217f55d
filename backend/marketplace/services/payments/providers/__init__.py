from .base import PaymentGateway, PaymentHandle, mint_reference, parse_reference, to_cents
from .cardlink import CardLinkGateway
from .qrpay import QRPayGateway
from .formpay import FormPayGateway

GATEWAYS = {
    CardLinkGateway.name: CardLinkGateway,
    QRPayGateway.name: QRPayGateway,
    FormPayGateway.name: FormPayGateway,
}
