"""Tool schemas for trip and expense extraction."""

from dataclasses import dataclass

EXPENSE_CATEGORIES = [
    "Meal", "Flight", "Hotel", "Car", "Rideshare/Taxi",
    "Entertainment", "Supplies", "Fees", "Other",
]

PAYMENT_METHODS = ["Personal Card", "Business Card", "Company Card", "Cash", "Other"]


def _string(description):
    return {"type": "string", "description": description}


def _number(description):
    return {"type": "number", "description": description}


def _boolean(description):
    return {"type": "boolean", "description": description}


TRIP_FIELDS = {
    "trip_name": _string("Name of the trip"),
    "city": _string("Destination city"),
    "country": _string("Destination country"),
    "beginning_date": _string("Start date in YYYY-MM-DD format"),
    "ending_date": _string("End date in YYYY-MM-DD format"),
    "client_or_event": _string("Client name or event name"),
    "fee": _number("Trip fee amount"),
    "expenses_reimbursable": _boolean("Whether expenses are reimbursable"),
    "flight_needed": _boolean("Whether a flight is needed"),
    "airline": _string("Outbound airline name"),
    "flight_number": _string("Outbound flight number"),
    "departure_time": _string("Outbound departure date and time in ISO format"),
    "arrival_time": _string("Outbound arrival date and time in ISO format"),
    "flight_confirmation": _string("Outbound flight confirmation number"),
    "return_airline": _string("Return airline name"),
    "return_flight_number": _string("Return flight number"),
    "return_departure_time": _string("Return departure date and time in ISO format"),
    "return_arrival_time": _string("Return arrival date and time in ISO format"),
    "return_flight_confirmation": _string("Return flight confirmation number"),
    "hotel_needed": _boolean("Whether a hotel is needed"),
    "hotel_name": _string("Hotel name"),
    "hotel_address": _string("Hotel address"),
    "hotel_booking_service": _string("Hotel booking service used"),
    "hotel_checkin_date": _string("Hotel check-in date in YYYY-MM-DD format"),
    "hotel_checkout_date": _string("Hotel check-out date in YYYY-MM-DD format"),
    "hotel_confirmation": _string("Hotel confirmation number"),
    "car_needed": _boolean("Whether a car rental is needed"),
    "car_rental_company": _string("Car rental company name"),
    "car_pickup_location": _string("Car pickup location"),
    "car_dropoff_location": _string("Car drop-off location"),
    "car_booking_service": _string("Car booking service used"),
    "car_pickup_datetime": _string("Car pickup date and time in ISO format"),
    "car_dropoff_datetime": _string("Car drop-off date and time in ISO format"),
    "car_confirmation": _string("Car rental confirmation number"),
    "internal_notes": _string("Any additional notes or details"),
}

EXPENSE_FIELDS = {
    "merchant": _string("Name of the business/vendor"),
    "amount": _number("Total amount spent, numeric value only"),
    "date": _string("Date of the transaction in YYYY-MM-DD format"),
    "category": {
        "type": "string",
        "enum": EXPENSE_CATEGORIES,
        "description": "Expense category",
    },
    "payment_method": {
        "type": "string",
        "enum": PAYMENT_METHODS,
        "description": "Payment method used",
    },
    "description": _string("Brief description of the purchase"),
    "reimbursable": _boolean("Whether this expense is reimbursable"),
    "currency": _string("Three-letter currency code (e.g., USD)"),
    "needs_clarification": _boolean("True if you need to ask the user about reimbursability"),
    "clarification_question": _string("Question to ask the user if needs_clarification is true"),
}


@dataclass(frozen=True)
class ExtractionSchema:
    """A fixed output schema plus the instructions that go with it."""

    tool_name: str
    description: str
    fields: dict
    instructions: str
    required: tuple = ()

    def tool(self) -> dict:
        """Anthropic tool definition for this schema."""
        input_schema = {
            "type": "object",
            "properties": self.fields,
            "additionalProperties": False,
        }
        if self.required:
            input_schema["required"] = list(self.required)
        return {
            "name": self.tool_name,
            "description": self.description,
            "input_schema": input_schema,
        }

    def describe_fields(self) -> str:
        lines = []
        for name, info in self.fields.items():
            line = f"- {name} ({info['type']}): {info['description']}"
            if "enum" in info:
                line += f". One of: {', '.join(info['enum'])}"
            lines.append(line)
        return "\n".join(lines)


TRIP_SCHEMA = ExtractionSchema(
    tool_name="extract_trip_data",
    description="Record trip information found in the conversation, images and documents",
    fields=TRIP_FIELDS,
    instructions=(
        "You are a helpful assistant that extracts trip information from user messages, "
        "images and booking documents. Extract dates, locations, flight details, hotel "
        "information, car rental details, fees and client/event names. When several "
        "images or documents are provided, combine the information found across all of them."
    ),
)

EXPENSE_SCHEMA = ExtractionSchema(
    tool_name="extract_expense_info",
    description="Record structured expense information from a receipt or description",
    fields=EXPENSE_FIELDS,
    instructions=(
        "You are an assistant that extracts expense information from receipts and text "
        "descriptions. Use the amount as a plain number without currency symbols and default "
        "the currency to USD when it is not clear. If you are unsure whether the expense is "
        "reimbursable, set needs_clarification and ask in clarification_question; default "
        "reimbursable to true when it looks like a business expense."
    ),
    required=("merchant", "amount", "date", "category"),
)
