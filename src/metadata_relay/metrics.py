"""Worker counters"""

from typing import Dict
from prometheus_client import CollectorRegistry, Counter


class RelayMetrics:
    """Counters kept on a private registry so several workers can coexist"""

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()
        self.tokens_processed = Counter(
            "relay_tokens_processed", "Tokens that went through the pipeline",
            ["project"], registry=self.registry,
        )
        self.tokens_skipped = Counter(
            "relay_tokens_skipped", "Tokens already present on the marketplace",
            ["project"], registry=self.registry,
        )
        self.token_failures = Counter(
            "relay_token_failures", "Tokens dropped by a processing error",
            ["project"], registry=self.registry,
        )
        self.integrity_published = Counter(
            "relay_integrity_published", "Integrity messages sent",
            ["project"], registry=self.registry,
        )
        self.messages_generated = Counter(
            "relay_messages_generated", "Attribute messages signed",
            ["project"], registry=self.registry,
        )
        self.message_batches = Counter(
            "relay_message_batches", "Message batches sent",
            ["project"], registry=self.registry,
        )
        self.messages_published = Counter(
            "relay_messages_published", "Attribute messages accepted by the marketplace",
            ["project"], registry=self.registry,
        )
        self.publish_failures = Counter(
            "relay_publish_failures", "Message batches rejected",
            ["project"], registry=self.registry,
        )

    def value(self, name: str, project: str = None) -> float:
        """Current value of a counter, summed over projects when none is given"""
        sample = f"relay_{name}_total"
        if project is not None:
            return self.registry.get_sample_value(sample, {"project": project}) or 0.0
        total = 0.0
        for metric in self.registry.collect():
            for s in metric.samples:
                if s.name == sample:
                    total += s.value
        return total

    def snapshot(self) -> Dict[str, float]:
        names = [
            "tokens_processed", "tokens_skipped", "token_failures",
            "integrity_published", "messages_generated", "message_batches",
            "messages_published", "publish_failures",
        ]
        return {name: self.value(name) for name in names}
