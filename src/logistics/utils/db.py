from protean.domain import Domain
from sqlalchemy import create_engine

from logistics.utils.logging import get_logger

logger = get_logger(__name__)

_RDBMS_PROVIDERS = ("sqlite", "postgresql")


def _register_models(domain: Domain, provider_name: str) -> None:
    # Touching ``_dao`` makes Protean build and register the SQLAlchemy model
    for registry in (domain.registry.aggregates, domain.registry.entities):
        for _, record in registry.items():
            if record.cls.meta_.provider == provider_name:
                domain.repository_for(record.cls)._dao  # noqa: B018


def setup_db(domain: Domain) -> None:
    """Create tables for every relational provider of ``domain``."""
    with domain.domain_context():
        for name, provider in domain.providers.items():
            if provider.conn_info["provider"] not in _RDBMS_PROVIDERS:
                continue
            engine = create_engine(provider.conn_info["database_uri"])
            _register_models(domain, name)
            provider._metadata.create_all(engine)
            logger.info("schema_created", domain=domain.name, provider=name)


def drop_db(domain: Domain) -> None:
    """Drop tables for every relational provider of ``domain``."""
    with domain.domain_context():
        for name, provider in domain.providers.items():
            if provider.conn_info["provider"] not in _RDBMS_PROVIDERS:
                continue
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.drop_all(engine)
            logger.info("schema_dropped", domain=domain.name, provider=name)


def fetch_all(query) -> list:
    """Every record matching ``query``, past the aggregate's default page size.

    ``filter`` and ``order_by`` reset an unset limit to the default, so the
    limit is lifted last, just before evaluation.
    """
    return query.limit(None).all().items
