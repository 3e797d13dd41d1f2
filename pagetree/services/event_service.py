"""
Bus d'événements de mutation (in-process).

Le diffuseur temps réel et l'indexeur de recherche s'abonnent ici; les
services publient seulement après le commit de leur unité de travail.
"""

import logging
import uuid
from typing import Callable, Dict, Optional, Union
from pagetree.schemas.event import MutationEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[MutationEvent], None]


class EventBus:
    def __init__(self):
        self._subscriptions: Dict[str, EventHandler] = {}

    def subscribe(self, handler: EventHandler) -> str:
        subscription_id = str(uuid.uuid4())
        self._subscriptions[subscription_id] = handler
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    def publish(self, event: MutationEvent) -> None:
        # une erreur d'abonné n'arrête pas la livraison aux autres
        for subscription_id, handler in list(self._subscriptions.items()):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler {subscription_id} failed on {event.entity_type}:{event.operation}")


event_bus = EventBus()


def publish_event(
    entity_type: str,
    entity_id: int,
    operation: str,
    workspace_id: Optional[int] = None,
    page_id: Optional[int] = None,
    affected_parent_id: Optional[int] = None,
    new_order: Optional[Union[str, int]] = None,
) -> MutationEvent:
    event = MutationEvent(
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
        workspace_id=workspace_id,
        page_id=page_id,
        affected_parent_id=affected_parent_id,
        new_order=new_order,
    )
    logger.debug(f"Publishing {entity_type}:{operation} #{entity_id}")
    event_bus.publish(event)
    return event
