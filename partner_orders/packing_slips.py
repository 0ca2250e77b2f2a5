"""
Packing slip records. Rendering the slip (HTML/PDF) happens elsewhere; this
only stores what it is built from.

The slip is written through the caller's session, so it commits or rolls back
together with the order's packing_slip_generated flag and its history entry.
"""
import logging

from partner_orders.models import PackingSlip

logger = logging.getLogger(__name__)


class PackingSlipService:
    async def create(
        self,
        session,
        order_id: str,
        seed_invoice_number: str | None,
        seed_so_number: str | None,
        actor_id: str | None,
        shipping_method: str | None = None,
        netsuite_reference: str | None = None,
        notes: str | None = None,
    ) -> PackingSlip:
        slip = PackingSlip(
            order_id=order_id,
            invoice_number=seed_invoice_number,
            so_number=seed_so_number,
            shipping_method=shipping_method,
            netsuite_reference=netsuite_reference,
            notes=notes,
            created_by=actor_id,
        )
        await session.insert_packing_slip(slip)
        logger.info("Packing slip %s written for order_id=%s", slip.id, order_id)
        return slip
