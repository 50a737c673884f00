from enum import Enum


class State(Enum):
    GREETING = "greeting"
    DETERMINE_TYPE = "determine_type"
    GET_NAME = "get_name"
    GET_ADDRESS = "get_address"
    GET_ISSUE = "get_issue"
    CONFIRM = "confirm"
    COMPLETE = "complete"
    LEAD_INQUIRY = "lead_inquiry"
