"""支付事件、幂等台账、审计记录 CRUD 操作"""
from sqlmodel import Session, select

from app.enums import OrderStatus, PaymentProvider
from app.models import OrderAuditEntry, PaymentEvent, ProcessedEvent


def get_processed(
    *, session: Session, provider: PaymentProvider, provider_event_id: str
) -> ProcessedEvent | None:
    """查询幂等台账"""
    stmt = select(ProcessedEvent).where(
        ProcessedEvent.provider == provider.value,
        ProcessedEvent.provider_event_id == provider_event_id,
    )
    return session.exec(stmt).first()


def add_processed(
    *,
    session: Session,
    provider: PaymentProvider,
    provider_event_id: str,
    resulting_status: OrderStatus | None = None,
) -> ProcessedEvent:
    """写入幂等台账（只 flush，不提交；唯一约束冲突时抛出 IntegrityError）"""
    record = ProcessedEvent(
        provider=provider,
        provider_event_id=provider_event_id,
        resulting_status=resulting_status,
    )
    session.add(record)
    session.flush()
    return record


def get_payment_event(
    *, session: Session, provider: PaymentProvider, provider_event_id: str
) -> PaymentEvent | None:
    stmt = select(PaymentEvent).where(
        PaymentEvent.provider == provider.value,
        PaymentEvent.provider_event_id == provider_event_id,
    )
    return session.exec(stmt).first()


def add_payment_event(*, session: Session, event: PaymentEvent) -> PaymentEvent:
    """保存规范化事件（只 flush，不提交）"""
    session.add(event)
    session.flush()
    return event


def append_audit_entry(*, session: Session, entry: OrderAuditEntry) -> OrderAuditEntry:
    """追加审计记录（不提交，与状态写入同一事务）"""
    session.add(entry)
    session.flush()
    return entry


def list_audit_entries(*, session: Session, order_id: int) -> list[OrderAuditEntry]:
    """订单的审计记录，按写入顺序"""
    stmt = (
        select(OrderAuditEntry)
        .where(OrderAuditEntry.order_id == order_id)
        .order_by(OrderAuditEntry.id)
    )
    return list(session.exec(stmt).all())
