import asyncio
from abc import abstractmethod

from shared.helper.HelperConfig import HelperConfig
from shared.clients.ClientInterface import ClientInterface
from shared.clients.realtime.models.ChangeEvent import ChangeCallback, ChangeEvent, Subscription
from shared.models.errors import BackendError


class RealtimeClientInterface(ClientInterface):
    """
    Change feed of the hosted backend.

    Subscriptions are per table and filtered to one organization. The engine
    owns the transport (connect, join, leave, message parsing); this class owns
    the registry of active subscriptions and the dispatch to their callbacks.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._subscriptions: dict[str, Subscription] = {}
        self._callbacks: dict[str, ChangeCallback] = {}
        self._topic_counter = 0

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "realtime"

    def get_subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def _get_topic(self, table: str, org_id: str) -> str:
        # unique per subscription so two views on the same org do not share a channel
        self._topic_counter += 1
        return f"realtime:{table}-changes-{org_id}-{self._topic_counter}"

    ##########################################
    ############### TRANSPORT ################
    ##########################################

    @abstractmethod
    async def _do_join(self, subscription: Subscription) -> None:
        """
        Join the channel of ``subscription`` on the feed, connecting first if needed.
        """
        pass

    @abstractmethod
    async def _do_leave(self, subscription: Subscription) -> None:
        """
        Leave the channel of ``subscription``. Must not raise when already disconnected.
        """
        pass

    @abstractmethod
    async def _do_disconnect(self) -> None:
        """
        Drop the feed connection and stop background tasks.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_subscribe(self, table: str, org_id: str, callback: ChangeCallback, access_token: str | None = None) -> Subscription:
        """
        Subscribe to INSERT/UPDATE/DELETE events on ``table`` for one organization.

        Args:
            table (str): Table to watch.
            org_id (str): Only rows with this org_id are delivered.
            callback (ChangeCallback): Awaited with every ChangeEvent of the channel.
            access_token (str | None): User JWT, so row-level security applies to the feed.

        Returns:
            Subscription: Handle to pass to do_unsubscribe().

        Raises:
            BackendError: If the feed cannot be reached.
        """
        subscription = Subscription(
            topic=self._get_topic(table, org_id),
            table=table,
            org_id=org_id,
            access_token=access_token,
        )
        self._subscriptions[subscription.topic] = subscription
        self._callbacks[subscription.topic] = callback
        try:
            await self._do_join(subscription)
        except BackendError:
            self._subscriptions.pop(subscription.topic, None)
            self._callbacks.pop(subscription.topic, None)
            raise
        self.logging.debug("Subscribed to '%s' changes for org %s (%s)", table, org_id, subscription.topic)
        return subscription

    async def do_unsubscribe(self, subscription: Subscription) -> None:
        """
        Stop delivery for ``subscription``. Unknown or already removed subscriptions are ignored.
        """
        if self._subscriptions.pop(subscription.topic, None) is None:
            return
        self._callbacks.pop(subscription.topic, None)
        await self._do_leave(subscription)
        self.logging.debug("Unsubscribed from '%s' changes for org %s", subscription.table, subscription.org_id)

    async def do_dispatch(self, topic: str, event: ChangeEvent) -> None:
        """
        Hand ``event`` to the callback registered for ``topic``.

        Events for topics without a subscription (e.g. late deliveries after an
        unsubscribe) are dropped. A failing callback is logged and does not stop
        delivery of later events.
        """
        callback = self._callbacks.get(topic)
        if callback is None:
            self.logging.debug("Dropping %s event on '%s' for inactive topic %s", event.event_type, event.table, topic)
            return
        try:
            await callback(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logging.error("Change handler for %s failed on %s %s: %s", topic, event.table, event.event_type, e, exc_info=True)

    async def close(self) -> None:
        """Leave all channels, disconnect and close the HTTP client."""
        for subscription in list(self._subscriptions.values()):
            await self.do_unsubscribe(subscription)
        await self._do_disconnect()
        await super().close()
