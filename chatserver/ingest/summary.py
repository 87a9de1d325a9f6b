"""
Processing summary computed from the store on every call.
"""
from chatserver.schemas.ingest import ConversationSummary, ProcessingSummary
from chatserver.services.message_store import MessageStore


class SummaryAggregator:

    def __init__(self, store: MessageStore):
        self.store = store

    def summarize(self) -> ProcessingSummary:
        return ProcessingSummary(
            total_messages=self.store.count(),
            messages_by_status=self.store.count_by_status(),
            conversations=[
                ConversationSummary(**rollup) for rollup in self.store.conversation_rollups()
            ],
        )
