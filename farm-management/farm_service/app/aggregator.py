from . import settings
from .schemas import AggregatedStock, FarmShare


def _item_key(name: str) -> str:
    return name.casefold()


def aggregate_stocks(stocks, farm_names: dict = None, search: str = None) -> list:
    """
    Groups stock records by article name, case-insensitively, across farms.

    Each group sums the quantities and lists every farm's share; the first
    record seen gives the display name and unit, and the newest
    `last_updated` wins. Groups are sorted by article name. No state is kept
    between calls.
    """
    farm_names = farm_names or {}
    groups = {}

    for stock in stocks:
        key = _item_key(stock.item)
        share = FarmShare(
            farm_id=stock.secteur_id,
            farm_name=farm_names.get(stock.secteur_id, settings.CENTRAL_FERME_NAME),
            quantity=stock.quantity,
        )
        group = groups.get(key)
        if group is None:
            groups[key] = AggregatedStock(
                item=stock.item,
                total_quantity=stock.quantity,
                unit=stock.unit,
                farms=[share],
                last_updated=stock.last_updated,
            )
            continue

        group.total_quantity += stock.quantity
        group.farms.append(share)
        if stock.last_updated and (group.last_updated is None or stock.last_updated > group.last_updated):
            group.last_updated = stock.last_updated

    result = list(groups.values())
    if search:
        needle = _item_key(search)
        result = [group for group in result if needle in _item_key(group.item)]
    return sorted(result, key=lambda group: (_item_key(group.item), group.item))
