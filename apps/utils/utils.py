import uuid


def generate_code(prefix=""):
    return prefix + uuid.uuid4().hex[:8].upper()
