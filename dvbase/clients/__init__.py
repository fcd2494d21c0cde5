from dvbase.clients.ninox import NinoxAPIError, NinoxClient, NinoxClientConfig, RecordQuery

__all__ = ["NinoxAPIError", "NinoxClient", "NinoxClientConfig", "RecordQuery"]
