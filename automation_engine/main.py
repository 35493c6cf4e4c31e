"""Main FastAPI application for the automation engine."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from .api.endpoints import router, init_dependencies
from .config import EngineConfig, get_config, validate_config
from .core.builtin_handlers import register_builtin_handlers
from .core.dispatcher import DispatcherRegistry, TimeoutDispatcher
from .core.error_recovery import RetryConfig
from .core.executor import WorkflowExecutor
from .core.graph_validator import GraphValidator
from .core.logging import setup_logging, get_logger
from .core.middleware import ErrorHandlingMiddleware, PerformanceMonitoringMiddleware
from .core.run_registry import ActiveRunRegistry
from .storage.database import init_database, reset_database_engine
from .storage.repository import ExecutionStore, WorkflowStore
from .tools.actions import register_action_handlers


def build_executor(config: EngineConfig, registry: DispatcherRegistry) -> WorkflowExecutor:
    """Wire a WorkflowExecutor for the given configuration."""
    dispatcher = TimeoutDispatcher(registry, config.default_timeout_ms) if config.enforce_timeout else registry
    return WorkflowExecutor(
        dispatcher,
        run_registry=ActiveRunRegistry(),
        validator=GraphValidator(allow_action_chaining=config.allow_action_chaining),
        retry_config=RetryConfig.from_config(config)
    )


def create_app(config: Optional[EngineConfig] = None) -> FastAPI:
    """Create the FastAPI application."""
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        validate_config(config)

        session_factory = init_database(
            config.database_url,
            echo=config.database_echo,
            connect_args=config.get_database_connect_args()
        )
        logger.info("Database tables created")

        registry = DispatcherRegistry()
        register_builtin_handlers(registry)
        register_action_handlers(registry)

        executor = build_executor(config, registry)
        init_dependencies(
            executor=executor,
            workflow_store=WorkflowStore(session_factory),
            execution_store=ExecutionStore(session_factory),
            dispatcher_registry=registry,
            max_active_executions=config.max_active_executions,
            default_max_retries=config.default_max_retries,
            default_timeout_ms=config.default_timeout_ms
        )
        app.state.executor = executor
        logger.info("Core components initialized")

        yield

        # Shutdown
        logger.info(f"Shutting down {config.app_name}")
        for execution_id in executor.get_active_executions():
            executor.cancel_execution(execution_id)
        reset_database_engine()

    app = FastAPI(
        title=config.app_name,
        description="Validates, plans and executes node/edge automation workflows",
        version=config.app_version,
        debug=config.debug,
        lifespan=lifespan
    )

    app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": f"{config.app_name} is running"}

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        executor = getattr(request.app.state, "executor", None)
        return {
            "status": "healthy",
            "service": "automation-engine",
            "version": config.app_version,
            "active_executions": len(executor.get_active_executions()) if executor else 0
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, **get_config().get_uvicorn_config())
