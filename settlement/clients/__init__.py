from settlement.clients.email_client import EmailClient, email_client
from settlement.clients.tsara import PaymentGateway, TsaraClient, tsara_client

__all__ = ["EmailClient", "email_client", "PaymentGateway", "TsaraClient", "tsara_client"]
