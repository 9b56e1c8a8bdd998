from flask import Blueprint, request, current_app

from models.schemas.rates import (
    ConversionOutSchema,
    ConvertQuerySchema,
    HistoricalPageOutSchema,
    HistoricalQuerySchema,
    LatestQuerySchema,
    LatestRatesOutSchema,
)
from services.container import current_services
from utils.decorators import access_token_required, roles_required

bp = Blueprint("currencies", __name__, url_prefix="/currencies")

latest_query_schema = LatestQuerySchema()
convert_query_schema = ConvertQuerySchema()
latest_out_schema = LatestRatesOutSchema()
historical_out_schema = HistoricalPageOutSchema()
conversion_out_schema = ConversionOutSchema()


def _query_args():
    # keep repeated keys (symbols=USD&symbols=GBP) as lists
    args = request.args.to_dict(flat=False)
    return {k: (v if k == "symbols" else v[-1]) for k, v in args.items()}


@bp.get("/latest")
@access_token_required()
async def latest_rates():
    """
    Latest exchange rates
    ---
    tags:
      - Currencies
    security:
      - Bearer: []
    parameters:
      - in: query
        name: base
        type: string
        default: EUR
      - in: query
        name: symbols
        type: string
        description: Comma-separated currency codes, e.g. USD,GBP
      - in: query
        name: provider
        type: string
        default: frankfurter
    responses:
      200:
        description: Latest rates for the base currency
      400:
        description: Unsupported symbol or provider
      401:
        description: Unauthorized
      503:
        description: Upstream circuit open
    """
    q = latest_query_schema.load(_query_args())
    snapshot = await current_services().rates.latest(q["base"], q["symbols"], q["provider"])
    return latest_out_schema.dump(snapshot), 200


@bp.get("/historical")
@roles_required(["Admin"])
async def historical_rates():
    """
    Paged historical exchange rates (Admin only)
    ---
    tags:
      - Currencies
    security:
      - Bearer: []
    parameters:
      - in: query
        name: start_date
        type: string
        format: date
        required: true
      - in: query
        name: end_date
        type: string
        format: date
        required: true
      - in: query
        name: base
        type: string
      - in: query
        name: symbols
        type: string
      - in: query
        name: provider
        type: string
      - in: query
        name: page
        type: integer
        default: 1
      - in: query
        name: page_size
        type: integer
        default: 50
    responses:
      200:
        description: One page of daily rates, ascending by date
      403:
        description: Forbidden
      422:
        description: Validation error
    """
    schema = HistoricalQuerySchema(
        max_range_days=current_app.config["HISTORICAL_MAX_RANGE_DAYS"],
        max_page_size=current_app.config["HISTORICAL_MAX_PAGE_SIZE"],
    )
    q = schema.load(_query_args())
    result = await current_services().rates.historical(
        q["start_date"],
        q["end_date"],
        base=q["base"],
        symbols=q["symbols"],
        provider=q["provider"],
        page=q["page"],
        page_size=q["page_size"],
    )
    page = result.page
    return historical_out_schema.dump({
        "base": result.base,
        "start_date": result.start_date,
        "end_date": result.end_date,
        "rates": dict(page.items),
        "current_page": page.current_page,
        "page_size": page.page_size,
        "total_pages": page.total_pages,
        "total_records": page.total_records,
    }), 200


@bp.get("/convert")
@access_token_required()
async def convert():
    """
    Convert an amount between two currencies at the latest rate
    ---
    tags:
      - Currencies
    security:
      - Bearer: []
    parameters:
      - in: query
        name: from
        type: string
        required: true
      - in: query
        name: to
        type: string
        required: true
      - in: query
        name: amount
        type: number
        required: true
      - in: query
        name: provider
        type: string
    responses:
      200:
        description: Converted amount rounded to cents
      404:
        description: No rate for the currency pair
    """
    q = convert_query_schema.load(_query_args())
    result = await current_services().rates.convert(
        q["from_currency"], q["to_currency"], q["amount"], q["provider"]
    )
    return conversion_out_schema.dump({
        "from_currency": q["from_currency"],
        "to_currency": q["to_currency"],
        "amount": q["amount"],
        "result": result,
    }), 200


@bp.get("/providers")
def list_providers():
    """
    Registered rate providers
    ---
    tags:
      - Currencies
    responses:
      200:
        description: Provider names
    """
    return {"providers": sorted(current_services().providers.available_providers)}, 200
