"""
Django signals keeping agent counters in step with agent-fixer links.

``Agent.total_fixers_managed`` selects the fixer bonus tier, so it is updated
with F() expressions whenever a link is created or removed.
"""

import logging

from django.db.models import F
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .models import Agent, AgentFixer

logger = logging.getLogger(__name__)


@receiver(post_save, sender=AgentFixer)
def increment_fixers_managed(sender, instance, created, **kwargs):
    """
    Count a newly linked fixer against the agent.

    Runs inside the transaction that created the link; if the update fails the
    link creation is rolled back with it.

    Args:
        sender: The AgentFixer model class
        instance: The AgentFixer instance that was saved
        created: Boolean indicating if this is a new link
        **kwargs: Additional keyword arguments
    """
    if not created:
        return
    try:
        Agent.objects.filter(pk=instance.agent_id).update(
            total_fixers_managed=F('total_fixers_managed') + 1
        )
        logger.info(
            f"Agent fixer count incremented. Agent ID: {instance.agent_id}, "
            f"Fixer ID: {instance.fixer_id}"
        )
    except Exception as e:
        logger.error(
            f"Error incrementing fixers managed for agent {instance.agent_id}: {str(e)}",
            exc_info=True
        )
        raise


@receiver(post_delete, sender=AgentFixer)
def decrement_fixers_managed(sender, instance, **kwargs):
    try:
        Agent.objects.filter(
            pk=instance.agent_id,
            total_fixers_managed__gt=0
        ).update(total_fixers_managed=F('total_fixers_managed') - 1)
    except Exception as e:
        logger.error(
            f"Error decrementing fixers managed for agent {instance.agent_id}: {str(e)}",
            exc_info=True
        )
        raise
