"""支付方式 CRUD 操作"""
from sqlmodel import Session, delete, select

from app.enums import PaymentProvider
from app.models import PaymentMethod


def get(*, session: Session, method_id: int) -> PaymentMethod | None:
    return session.get(PaymentMethod, method_id)


def get_owner_id(*, session: Session, method_id: int) -> int | None:
    """查询支付方式所有者"""
    return session.exec(
        select(PaymentMethod.owner_id).where(PaymentMethod.id == method_id)
    ).first()


def list_for_owner(*, session: Session, owner_id: int) -> list[PaymentMethod]:
    stmt = (
        select(PaymentMethod)
        .where(PaymentMethod.owner_id == owner_id)
        .order_by(PaymentMethod.created_at.desc())
    )
    return list(session.exec(stmt).all())


def create(*, session: Session, method: PaymentMethod) -> PaymentMethod:
    session.add(method)
    session.commit()
    session.refresh(method)
    return method


def delete_by_ref(*, session: Session, provider: PaymentProvider, ref: str) -> int:
    """按渠道引用删除（渠道通知解绑时调用，不提交），返回删除条数"""
    result = session.exec(  # type: ignore[call-overload]
        delete(PaymentMethod).where(
            PaymentMethod.provider == provider.value,
            PaymentMethod.payment_method_ref == ref,
        )
    )
    return result.rowcount
