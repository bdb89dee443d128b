"""Dependency injection container for the engine."""

from dependency_injector import containers, providers

from src.engine.application.rule_engine import RuleEngine
from src.engine.infrastructure.logging import configure_structured_logging
from src.engine.infrastructure.rule_loader import JsonRuleLoader
from src.engine.infrastructure.status_sink import CSVStatusSink, InMemoryStatusSink


class EngineContainer(containers.DeclarativeContainer):
    """Dependency injection container for the engine."""

    config = providers.Configuration()

    # Typed engine settings (durations stay TimeDelta objects)
    engine_settings = providers.Object(None)

    # Status sinks
    memory_status_sink = providers.Singleton(InMemoryStatusSink)

    csv_status_sink = providers.Singleton(
        CSVStatusSink,
        filepath=config.engine.status_csv_path,
        buffer_size=config.engine.status_csv_buffer_size,
    )

    status_sink = providers.Selector(
        config.engine.status_sink,
        memory=memory_status_sink,
        csv=csv_status_sink,
    )

    # Rule loading
    rule_loader = providers.Factory(
        JsonRuleLoader,
        path=config.engine.rules_file,
    )

    # Application - one engine per activated rule instance
    rule_engine = providers.Factory(
        RuleEngine,
        config=engine_settings,
        status_sink=status_sink,
    )


# Global container instance
_engine_container: EngineContainer | None = None


def init_engine_container(app_config=None) -> EngineContainer:
    """Initialize the global container and logging from an AppConfig."""
    global _engine_container
    if app_config is None:
        from src.config import AppConfig

        app_config = AppConfig()

    configure_structured_logging(
        level=app_config.logging.level,
        file=app_config.logging.file,
        rotation=app_config.logging.rotation,
        retention=app_config.logging.retention,
    )

    _engine_container = EngineContainer()
    _engine_container.config.from_pydantic(app_config)
    _engine_container.engine_settings.override(providers.Object(app_config.engine))
    return _engine_container


def get_engine_container() -> EngineContainer:
    """Get the global engine container, initializing it from the environment if needed."""
    if _engine_container is None:
        return init_engine_container()
    return _engine_container
