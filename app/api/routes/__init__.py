from . import credits, events, generation, internal, push, webhooks

__all__ = ["credits", "events", "generation", "internal", "push", "webhooks"]
