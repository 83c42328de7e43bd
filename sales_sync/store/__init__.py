from sales_sync.store.gateway import PostgresGateway, connect_from_config

__all__ = ["PostgresGateway", "connect_from_config"]
