from kafunc.models.records import InboundRecord, OutboundRecord, SentRecord, producer_record

__all__ = ["InboundRecord", "OutboundRecord", "SentRecord", "producer_record"]
