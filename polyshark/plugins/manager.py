"""Plugin pipeline around the signal -> execute -> complete flow.

Plugins are plain synchronous handlers invoked in registration order. They
see frozen signals and exit records only, so they can veto or adjust a trade
but cannot reach into the ledger, risk gate or spend guard.
"""
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
import structlog

from polyshark.core.config import NotificationConfig
from polyshark.core.models import ArbitrageSignal, ExitRecord, to_decimal

logger = structlog.get_logger(__name__)


class DecisionKind(str, Enum):
    CONTINUE = "continue"
    SKIP = "skip"
    MODIFY_SIZE = "modify_size"
    MODIFY_SPREAD = "modify_spread"


@dataclass(frozen=True)
class PluginDecision:
    """A plugin's verdict on a signal.

    Attributes:
        kind: What the plugin wants done
        reason: Why the signal is skipped (SKIP only)
        value: New per-leg size (MODIFY_SIZE) or minimum spread (MODIFY_SPREAD)
    """
    kind: DecisionKind = DecisionKind.CONTINUE
    reason: str = ""
    value: Optional[Decimal] = None

    @classmethod
    def proceed(cls) -> "PluginDecision":
        return cls()

    @classmethod
    def skip(cls, reason: str) -> "PluginDecision":
        return cls(kind=DecisionKind.SKIP, reason=reason)

    @classmethod
    def modify_size(cls, size) -> "PluginDecision":
        return cls(kind=DecisionKind.MODIFY_SIZE, value=to_decimal(size))

    @classmethod
    def modify_spread(cls, threshold) -> "PluginDecision":
        return cls(kind=DecisionKind.MODIFY_SPREAD, value=to_decimal(threshold))


class PluginAction(str, Enum):
    """Requested reaction to an error, in increasing severity."""
    SKIP = "skip"
    RETRY = "retry"
    HALT = "halt"


_ACTION_SEVERITY = {PluginAction.SKIP: 0, PluginAction.RETRY: 1, PluginAction.HALT: 2}


class AgentPlugin:
    """Base class for agent plugins. Every hook is optional."""

    name = "plugin"
    version = "1.0.0"
    description = ""

    def on_start(self):
        pass

    def on_stop(self):
        pass

    def on_trade_signal(self, signal: ArbitrageSignal) -> PluginDecision:
        return PluginDecision.proceed()

    def on_trade_complete(self, record: ExitRecord):
        pass

    def on_error(self, error: str) -> PluginAction:
        return PluginAction.SKIP


class PluginManager:
    """Ordered registry of plugins."""

    def __init__(self):
        self._plugins: List[AgentPlugin] = []

    def register(self, plugin: AgentPlugin):
        if any(p.name == plugin.name for p in self._plugins):
            raise ValueError(f"Plugin {plugin.name} is already registered")
        self._plugins.append(plugin)
        logger.info("plugins.registered", plugin=plugin.name, version=plugin.version)

    def unregister(self, name: str) -> bool:
        before = len(self._plugins)
        self._plugins = [p for p in self._plugins if p.name != name]
        return len(self._plugins) < before

    @property
    def plugins(self) -> List[AgentPlugin]:
        return list(self._plugins)

    def start_all(self):
        for plugin in self._plugins:
            self._call(plugin, "on_start")

    def stop_all(self):
        for plugin in self._plugins:
            self._call(plugin, "on_stop")

    def process_signal(self, signal: ArbitrageSignal) -> PluginDecision:
        """First non-CONTINUE decision wins; a failing plugin is treated as CONTINUE."""
        for plugin in self._plugins:
            decision = self._call(plugin, "on_trade_signal", signal)
            if decision is None or decision.kind == DecisionKind.CONTINUE:
                continue
            logger.info(
                "plugins.signal_decision",
                plugin=plugin.name,
                market_id=signal.market_id,
                decision=decision.kind.value,
                reason=decision.reason,
                value=str(decision.value) if decision.value is not None else None,
            )
            return decision
        return PluginDecision.proceed()

    def notify_trade_complete(self, record: ExitRecord):
        for plugin in self._plugins:
            self._call(plugin, "on_trade_complete", record)

    def handle_error(self, error: str) -> PluginAction:
        """Most severe action requested by any plugin (SKIP when none)."""
        action = PluginAction.SKIP
        for plugin in self._plugins:
            requested = self._call(plugin, "on_error", error)
            if requested is not None and _ACTION_SEVERITY[requested] > _ACTION_SEVERITY[action]:
                action = requested
        return action

    def _call(self, plugin: AgentPlugin, hook: str, *args):
        try:
            return getattr(plugin, hook)(*args)
        except Exception as e:
            logger.error("plugins.hook_failed", plugin=plugin.name, hook=hook, error=str(e))
            return None


# =============================================================================
# Built-in Plugins
# =============================================================================


class NotificationPlugin(AgentPlugin):
    """Sends trade completions and errors to Telegram and/or Discord.

    Hooks stay synchronous; HTTP posts run on a single worker thread so the
    trading loop never waits on a notification target.
    """

    name = "notifications"
    description = "Sends notifications via Telegram and Discord"

    TELEGRAM_API = "https://api.telegram.org"

    def __init__(
        self,
        telegram_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        discord_webhook: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.telegram_token = telegram_token
        self.telegram_chat_id = telegram_chat_id
        self.discord_webhook = discord_webhook
        self._client = client or httpx.Client(timeout=5.0)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notifications")
        self.sent = 0

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "NotificationPlugin":
        return cls(
            telegram_token=config.telegram_bot_token,
            telegram_chat_id=config.telegram_chat_id,
            discord_webhook=config.discord_webhook_url,
        )

    def on_stop(self):
        # Drain queued messages before closing the client
        self._executor.shutdown(wait=True)
        self._client.close()

    def on_trade_complete(self, record: ExitRecord):
        outcome = "Profit" if record.is_win else "Loss"
        message = (
            f"PolyShark trade complete\n"
            f"Market: {record.position.market_id}\n"
            f"Exit: {record.reason.value}\n"
            f"PnL: ${record.pnl:.4f} ({outcome})"
        )
        self.send(message)

    def on_error(self, error: str) -> PluginAction:
        self.send(f"PolyShark error: {error}")
        return PluginAction.SKIP

    def send(self, message: str) -> Future:
        """Queue delivery to every configured target and return immediately."""
        return self._executor.submit(self._deliver, message)

    def _deliver(self, message: str):
        if self.telegram_token and self.telegram_chat_id:
            self._post(
                f"{self.TELEGRAM_API}/bot{self.telegram_token}/sendMessage",
                {"chat_id": self.telegram_chat_id, "text": message},
                target="telegram",
            )
        if self.discord_webhook:
            self._post(self.discord_webhook, {"content": message}, target="discord")

    def _post(self, url: str, payload: Dict[str, Any], target: str):
        try:
            response = self._client.post(url, json=payload)
            response.raise_for_status()
            self.sent += 1
        except httpx.HTTPError as e:
            logger.warning("notifications.send_failed", target=target, error=str(e))
