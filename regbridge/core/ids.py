import uuid

def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def new_request_id() -> str:
    # Correlates one inbound registration with its outbound store calls
    return gen_id("req")
