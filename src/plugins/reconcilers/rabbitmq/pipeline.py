"""
Component pipeline shared by the RabbitMQ reconcilers.

A reconciler is an ordered list of components. Each pass runs them in
order against one resource, then sets the aggregate ``Ready`` condition
and writes status back through the context. A component may ask for the
rest of the pipeline to be skipped and for a delayed re-run.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from config import DefaultConnection
from errors import ConfigurationError, DependencyError, OperatorError
from plugins.reconcilers.base import ReconcileResult, ReconcilerContext, ReconcilerPlugin
from plugins.reconcilers.rabbitmq.client import AdminClient
from plugins.reconcilers.rabbitmq.conditions import READY, Conditions
from plugins.reconcilers.rabbitmq.connection import BrokerURI, resolve_connection

logger = logging.getLogger(__name__)

WatchMapper = Callable[..., Any]


@dataclass
class ComponentResult:
    """What a component asks of the pipeline after it has run."""

    requeue_after: Optional[int] = None
    skip_remaining: bool = False


class ConvergencePass:
    """
    State for one pass over one resource.

    Holds the parsed spec, the conditions being built, data shared between
    components and the lazily resolved broker connection.
    """

    def __init__(
        self,
        resource: Dict[str, Any],
        spec: BaseModel,
        ctx: ReconcilerContext,
        client_factory: Callable[..., AdminClient] = AdminClient,
        defaults: Optional[DefaultConnection] = None,
    ):
        self.resource = resource
        self.spec = spec
        self.ctx = ctx
        self.conditions = Conditions(resource.get("conditions"))
        self.data: Dict[str, Any] = {}
        self._client_factory = client_factory
        self._defaults = defaults
        self._connection: Optional[Tuple[AdminClient, BrokerURI]] = None

    @property
    def kind(self) -> str:
        return self.resource["kind"]

    @property
    def namespace(self) -> str:
        return self.resource.get("namespace", "default")

    @property
    def name(self) -> str:
        return self.resource["name"]

    async def connect(self) -> Tuple[AdminClient, BrokerURI]:
        """Resolve the connection once per pass."""
        if self._connection is None:
            self._connection = await resolve_connection(
                self.spec.connection,
                self.namespace,
                self.ctx,
                defaults=self._defaults,
                client_factory=self._client_factory,
            )
        return self._connection

    async def event(self, reason: str, message: str) -> None:
        """Record a successful change."""
        logger.info(f"{self.kind} {self.namespace}/{self.name}: {message}")
        await self.ctx.emit_event(self.resource, "Normal", reason, message)


class Component(ABC):
    """One step of a reconciler pipeline."""

    name: str = ""
    # Condition owned by this component, set False when it raises
    condition: Optional[str] = None

    @abstractmethod
    async def reconcile(self, cpass: ConvergencePass) -> Optional[ComponentResult]:
        """Converge this component's part of the resource."""

    async def finalize(self, cpass: ConvergencePass) -> None:
        """Clean up broker state when the resource is deleted."""


class RabbitReconciler(ReconcilerPlugin):
    """
    Base reconciler running a component pipeline for one kind.

    Subclasses set ``kind``, ``spec_model`` and ``components`` and name the
    conditions that make up ``Ready``.
    """

    kind: str = ""
    spec_model: Type[BaseModel] = BaseModel

    def __init__(
        self,
        components: Optional[List[Component]] = None,
        client_factory: Callable[..., AdminClient] = AdminClient,
        defaults: Optional[DefaultConnection] = None,
    ):
        if components is None:
            components = self.default_components()
        self.components = components
        self.client_factory = client_factory
        self.defaults = defaults

    @property
    def name(self) -> str:
        return self.kind.lower()

    @property
    def resource_types(self) -> List[str]:
        return [self.kind]

    def default_components(self) -> List[Component]:
        return []

    def ready_conditions(self, spec: BaseModel) -> List[str]:
        return [c.condition for c in self.components if c.condition]

    async def start(self, ctx: ReconcilerContext) -> None:
        logger.info(
            f"Reconciler {self.name} ready: "
            f"{', '.join(c.name for c in self.components)}"
        )

    async def stop(self) -> None:
        logger.info(f"Reconciler {self.name} stopped")

    def parse_spec(self, resource: Dict[str, Any]) -> BaseModel:
        try:
            spec = self.spec_model.model_validate(resource.get("spec") or {})
        except PydanticValidationError as e:
            raise ConfigurationError(f"invalid {self.kind} spec: {e}") from e
        if hasattr(spec, "apply_defaults"):
            spec.apply_defaults(resource["name"])
        return spec

    def new_pass(
        self, resource: Dict[str, Any], ctx: ReconcilerContext
    ) -> ConvergencePass:
        return ConvergencePass(
            resource,
            self.parse_spec(resource),
            ctx,
            client_factory=self.client_factory,
            defaults=self.defaults,
        )

    async def reconcile(
        self, resource: Dict[str, Any], ctx: ReconcilerContext
    ) -> ReconcileResult:
        """
        Run one convergence pass.

        Every pass ends in exactly one of Pending, Ready, FailedRetryable or
        FailedFatal, and the resulting conditions are written back.
        """
        try:
            cpass = self.new_pass(resource, ctx)
        except ConfigurationError as e:
            conditions = Conditions(resource.get("conditions"))
            conditions.set_false(READY, e.reason, e.message)
            await ctx.write_status(resource, conditions.to_list())
            return ReconcileResult(success=False, message=e.message, retryable=False)

        result = await self._run_components(cpass)
        await ctx.write_status(resource, cpass.conditions.to_list())
        return result

    async def _run_components(self, cpass: ConvergencePass) -> ReconcileResult:
        for component in self.components:
            if component.condition:
                cpass.conditions.mark_evaluating(component.condition)
            try:
                outcome = await component.reconcile(cpass)
            except OperatorError as e:
                return self._failed(cpass, component, e)
            except Exception as e:
                logger.exception(
                    f"Unexpected error in {component.name} for {cpass.kind} "
                    f"{cpass.namespace}/{cpass.name}"
                )
                error = DependencyError(f"{component.name}: unexpected error: {e}")
                error.__cause__ = e
                return self._failed(cpass, component, error)

            if outcome is None:
                continue
            if outcome.skip_remaining:
                ready = None
                if component.condition:
                    ready = cpass.conditions.get(component.condition)
                if ready is not None and not ready.is_true:
                    cpass.conditions.set_false(READY, ready.reason, ready.message)
                else:
                    cpass.conditions.set_false(
                        READY, "Pending", f"{component.name} pending"
                    )
                return ReconcileResult(
                    success=False,
                    pending=True,
                    message=cpass.conditions.get(READY).message,
                    requeue_after=outcome.requeue_after,
                )
            if outcome.requeue_after is not None:
                cpass.data.setdefault("requeue_after", outcome.requeue_after)

        ready = cpass.conditions.aggregate(self.ready_conditions(cpass.spec))
        requeue_after = cpass.data.pop("requeue_after", None)
        if ready.is_true:
            return ReconcileResult(
                success=True, message=ready.message, requeue_after=requeue_after
            )

        # A dependency not yet ready (e.g. the companion user) is a pending state
        return ReconcileResult(
            success=False,
            pending=True,
            message=ready.message,
            requeue_after=requeue_after,
        )

    def _failed(
        self, cpass: ConvergencePass, component: Component, error: OperatorError
    ) -> ReconcileResult:
        logger.error(
            f"{self.kind} {cpass.namespace}/{cpass.name} failed in "
            f"{component.name}: {error.message}"
        )
        if component.condition:
            cpass.conditions.set_false(component.condition, error.reason, error.message)
        cpass.conditions.set_false(READY, error.reason, error.message)
        return ReconcileResult(
            success=False,
            message=error.message,
            requeue_after=error.requeue_after,
            retryable=error.retryable,
        )

    async def finalize(
        self, resource: Dict[str, Any], ctx: ReconcilerContext
    ) -> ReconcileResult:
        """Run component finalizers in reverse pipeline order."""
        try:
            cpass = self.new_pass(resource, ctx)
            for component in reversed(self.components):
                await component.finalize(cpass)
        except OperatorError as e:
            logger.error(f"Error finalizing {self.kind} {resource['name']}: {e.message}")
            return ReconcileResult(
                success=False,
                message=e.message,
                requeue_after=e.requeue_after,
                retryable=e.retryable,
            )
        return ReconcileResult(success=True, message=f"{self.kind} finalized")
