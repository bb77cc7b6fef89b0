import logging
import math
from decimal import Decimal
from app.results import PriceResult

FREE_MINUTES = 3


class PricingGateway:
    """Hourly tariff with a per-day cap. Sessions under three minutes are free."""

    def calculate_cost(self, lot, start, stop):
        if stop < start:
            return PriceResult.Error("Stop time cannot be before start time.")
        if lot.tariff is None or lot.day_tariff is None:
            return PriceResult.Error(f"Parking lot {lot.id} has no tariff configured.")

        seconds = (stop - start).total_seconds()
        if seconds < FREE_MINUTES * 60:
            return PriceResult.Success(Decimal("0.00"), 0, 0)

        tariff = Decimal(lot.tariff)
        day_tariff = Decimal(lot.day_tariff)

        billable_hours = math.ceil(seconds / 3600)
        billable_days, remaining_hours = divmod(billable_hours, 24)

        # a full day costs at most the day tariff, so does the trailing partial day
        full_day_price = min(tariff * 24, day_tariff)
        partial_price = min(tariff * remaining_hours, day_tariff)
        price = (full_day_price * billable_days + partial_price).quantize(Decimal("0.01"))

        logging.info(f"Calculated cost for lot {lot.id}: {price} ({billable_hours}h, {billable_days}d)")
        return PriceResult.Success(price, billable_hours, billable_days)
