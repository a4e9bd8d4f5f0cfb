import json

from handyman_payments.payments.errors import ValidationError
from handyman_payments.services import get_services
from handyman_payments.utils.http import check_method, parse_body, parse_flag, response, run_operation
from handyman_payments.utils.logger import get_logger

logger = get_logger("charge_additional_materials")


def lambda_handler(event, context):
    """
    POST /charge-additional-materials
        {task_id, material_costs, travel_fee?, material_receipts?, handyman_notes?,
         customer_approved?, idempotency_key?}

    Charges materials and travel after completion as a separate immediate charge.
    """
    logger.info(
        "charge.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )

    early = check_method(event, "POST")
    if early:
        return early

    try:
        payload = parse_body(event)
    except json.JSONDecodeError:
        return response(400, {"error": "invalid_json", "detail": "invalid_json"})

    task_id = payload.get("task_id")
    material_costs = payload.get("material_costs")
    if not task_id or material_costs is None or material_costs == "":
        logger.warning(
            "charge.missing_fields",
            extra={"task_id_present": bool(task_id), "material_costs_present": material_costs is not None},
        )
        return response(
            400,
            ValidationError(
                "missing task_id or material_costs",
                error="Task ID and material costs are required",
            ).to_body(),
        )

    try:
        customer_approved = parse_flag(payload.get("customer_approved"), "customer_approved")
    except ValidationError as e:
        logger.warning("charge.invalid_approval_flag", extra={"value": str(payload.get("customer_approved"))})
        return response(400, e.to_body())

    logger.info(
        "charge.requested",
        extra={"task_id": task_id, "material_costs": material_costs, "travel_fee": payload.get("travel_fee")},
    )

    return run_operation(
        "charge",
        "Additional materials charge failed",
        lambda: get_services().additional_charge.charge_additional(
            task_id,
            material_costs,
            travel_fee=payload.get("travel_fee"),
            receipts=payload.get("material_receipts"),
            notes=payload.get("handyman_notes"),
            customer_approved=customer_approved,
            idempotency_key=payload.get("idempotency_key"),
        ),
    )
