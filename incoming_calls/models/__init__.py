from incoming_calls.models.person import Base, Person

__all__ = ["Base", "Person"]
