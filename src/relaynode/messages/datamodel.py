# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Sequence
from datetime import UTC, datetime
from io import BytesIO
from typing import Any, ClassVar, Protocol, Self, overload, runtime_checkable

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PublicKey
from cryptography.x509 import Certificate

from relaynode.trust.private import PublicKey, deserialize_public_key, serialize_public_key
from relaynode.trust.x509 import deserialize_certificate, serialize_certificate

__all__ = (  # noqa: RUF022
    # Protocols and types

    'WireData',
    'DataWireAdapter',

    # Adapters

    'BooleanAdapter',
    'UnsignedIntegerAdapter',
    'UInt8Adapter',
    'UInt16Adapter',
    'UInt32Adapter',
    'UInt64Adapter',
    'OpaqueAdapter',
    'Opaque8Adapter',
    'Opaque16Adapter',
    'Opaque32Adapter',
    'StringAdapter',
    'String8Adapter',
    'String16Adapter',
    'LiteralBytesAdapter',
    'OptionalAdapter',
    'ListAdapter',
    'DateTimeAdapter',
    'CertificateAdapter',
    'CertificateListAdapter',
    'PublicKeyAdapter',
    'X25519PublicKeyAdapter',

    # Structures

    'Field',
    'Structure',
)


type WireData = bytes | bytearray | memoryview | BytesIO


@runtime_checkable
class DataWireAdapter[T](Protocol):
    """Wire protocol adapter for a data element of type T"""

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> T: ...

    @classmethod
    def to_wire(cls, value: T, /) -> bytes: ...

    @classmethod
    def validate(cls, value: T, /) -> T: ...


def byte_length(number: int) -> int:
    """Return the number of bytes needed to represent the number"""
    return (number.bit_length() + 7) // 8


def _read(buffer: BytesIO, size: int, what: str) -> bytes:
    data = buffer.read(size)
    if len(data) < size:
        raise ValueError(f'Insufficient data in buffer to extract {what}')
    return data


# Adapters

class BooleanAdapter:
    @classmethod
    def from_wire(cls, buffer: BytesIO) -> bool:
        match _read(buffer, 1, 'boolean value')[0]:
            case 0:
                return False
            case 1:
                return True
            case value:
                raise ValueError(f'Invalid boolean value: {value!r}')

    @classmethod
    def to_wire(cls, value: bool, /) -> bytes:  # noqa: FBT001
        return value.to_bytes(1)

    @classmethod
    def validate(cls, value: bool, /) -> bool:  # noqa: FBT001
        if not isinstance(value, bool):
            raise TypeError(f'Expected a boolean value, got {value!r}')
        return value


class UnsignedIntegerAdapter:
    _bits_: ClassVar[int] = NotImplemented
    _size_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, bits: int = NotImplemented, **kw: object) -> None:
        if bits is not NotImplemented:
            cls._bits_ = bits
            cls._size_ = bits // 8
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> int:
        return int.from_bytes(_read(buffer, cls._size_, f'an unsigned {cls._bits_}-bit integer'), byteorder='big')

    @classmethod
    def to_wire(cls, value: int, /) -> bytes:
        return value.to_bytes(cls._size_, byteorder='big')

    @classmethod
    def validate(cls, value: int, /) -> int:
        if value < 0 or value.bit_length() > cls._bits_:
            raise ValueError(f'Value is out of range for unsigned {cls._bits_}-bits integer: {value!r}')
        return value


class UInt8Adapter(UnsignedIntegerAdapter, bits=8):
    pass


class UInt16Adapter(UnsignedIntegerAdapter, bits=16):
    pass


class UInt32Adapter(UnsignedIntegerAdapter, bits=32):
    pass


class UInt64Adapter(UnsignedIntegerAdapter, bits=64):
    pass


class OpaqueAdapter:
    """Adapter for a bytes buffer of up to maxsize bytes, prefixed with its length"""

    _maxsize_: ClassVar[int] = NotImplemented
    _sizelen_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, maxsize: int = NotImplemented, **kw: object) -> None:
        if maxsize is not NotImplemented:
            cls._maxsize_ = maxsize
            cls._sizelen_ = byte_length(maxsize)
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> bytes:
        data_length = int.from_bytes(_read(buffer, cls._sizelen_, 'the opaque bytes length'), byteorder='big')
        if data_length > cls._maxsize_:
            raise ValueError(f'Data length is too big for opaque bytes ({data_length} > {cls._maxsize_})')
        return _read(buffer, data_length, 'the opaque bytes')

    @classmethod
    def to_wire(cls, value: bytes, /) -> bytes:
        return len(value).to_bytes(cls._sizelen_, byteorder='big') + value

    @classmethod
    def validate(cls, value: bytes, /) -> bytes:
        if len(value) > cls._maxsize_:
            raise ValueError(f'Value is too long for opaque bytes (max length is {cls._maxsize_}, value has {len(value)} bytes)')
        return bytes(value)


class Opaque8Adapter(OpaqueAdapter, maxsize=2**8 - 1):
    pass


class Opaque16Adapter(OpaqueAdapter, maxsize=2**16 - 1):
    pass


class Opaque32Adapter(OpaqueAdapter, maxsize=2**32 - 1):
    pass


class StringAdapter:
    """Represent strings as UTF-8 encoded length prefixed bytes limited to maxsize"""

    _opaque_: ClassVar[type[OpaqueAdapter]] = NotImplemented

    def __init_subclass__(cls, *, maxsize: int = NotImplemented, **kw: object) -> None:
        if maxsize is not NotImplemented:
            cls._opaque_ = type(f'{cls.__name__}Opaque', (OpaqueAdapter,), {}, maxsize=maxsize)
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> str:
        try:
            return cls._opaque_.from_wire(buffer).decode()
        except UnicodeDecodeError as exc:
            raise ValueError(f'Cannot decode bytes to string: {exc}') from exc

    @classmethod
    def to_wire(cls, value: str, /) -> bytes:
        return cls._opaque_.to_wire(value.encode())

    @classmethod
    def validate(cls, value: str, /) -> str:
        if not isinstance(value, str):
            raise TypeError(f'Expected a string value, got {value!r}')
        cls._opaque_.validate(value.encode())
        return value


class String8Adapter(StringAdapter, maxsize=2**8 - 1):
    pass


class String16Adapter(StringAdapter, maxsize=2**16 - 1):
    pass


class LiteralBytesAdapter:
    """Adapter for a literal bytes value, used to tag the serialization of a structure"""

    _static_value_: ClassVar[bytes] = NotImplemented

    def __init_subclass__(cls, *, value: bytes, **kw: object) -> None:
        cls._static_value_ = value
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> bytes:
        data = _read(buffer, len(cls._static_value_), f'literal bytes {cls._static_value_!r}')
        if data != cls._static_value_:
            raise ValueError(f'Value on wire does not match literal bytes {cls._static_value_!r} (wire content {data!r})')
        return cls._static_value_

    @classmethod
    def to_wire(cls, _: bytes, /) -> bytes:
        return cls._static_value_

    @classmethod
    def validate(cls, value: bytes, /) -> bytes:
        if value != cls._static_value_:
            raise ValueError(f'Invalid literal bytes value (expected {cls._static_value_!r}, got {value!r})')
        return value


class OptionalAdapter[T]:
    """Adapter for a value that may be missing, prefixed with a presence flag"""

    _adapter_: ClassVar[type[DataWireAdapter]] = NotImplemented

    def __init_subclass__(cls, *, adapter: type[DataWireAdapter[T]] = NotImplemented, **kw: object) -> None:
        if adapter is not NotImplemented:
            cls._adapter_ = adapter
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> T | None:
        if BooleanAdapter.from_wire(buffer):
            return cls._adapter_.from_wire(buffer)
        return None

    @classmethod
    def to_wire(cls, value: T | None, /) -> bytes:
        if value is None:
            return BooleanAdapter.to_wire(False)  # noqa: FBT003
        return BooleanAdapter.to_wire(True) + cls._adapter_.to_wire(value)  # noqa: FBT003

    @classmethod
    def validate(cls, value: T | None, /) -> T | None:
        return None if value is None else cls._adapter_.validate(value)


class ListAdapter[T]:
    """Adapter for a list of up to maxcount items, prefixed with the number of items"""

    _item_: ClassVar[type[DataWireAdapter]] = NotImplemented
    _maxcount_: ClassVar[int] = NotImplemented
    _countlen_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, item: type[DataWireAdapter[T]] = NotImplemented, maxcount: int = 2**8 - 1, **kw: object) -> None:
        if item is not NotImplemented:
            cls._item_ = item
            cls._maxcount_ = maxcount
            cls._countlen_ = byte_length(maxcount)
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> list[T]:
        count = int.from_bytes(_read(buffer, cls._countlen_, 'the number of list items'), byteorder='big')
        if count > cls._maxcount_:
            raise ValueError(f'Too many items in list ({count} > {cls._maxcount_})')
        return [cls._item_.from_wire(buffer) for _ in range(count)]

    @classmethod
    def to_wire(cls, value: Sequence[T], /) -> bytes:
        return len(value).to_bytes(cls._countlen_, byteorder='big') + b''.join(cls._item_.to_wire(item) for item in value)

    @classmethod
    def validate(cls, value: Sequence[T], /) -> list[T]:
        if len(value) > cls._maxcount_:
            raise ValueError(f'Too many items in list (max count is {cls._maxcount_}, value has {len(value)} items)')
        return [cls._item_.validate(item) for item in value]


class DateTimeAdapter:
    """Represent a timezone aware datetime as the number of seconds since the epoch"""

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> datetime:
        timestamp = UInt64Adapter.from_wire(buffer)
        try:
            return datetime.fromtimestamp(timestamp, tz=UTC)
        except (OverflowError, OSError) as exc:
            raise ValueError(f'Timestamp is out of range: {timestamp}') from exc

    @classmethod
    def to_wire(cls, value: datetime, /) -> bytes:
        return UInt64Adapter.to_wire(int(value.timestamp()))

    @classmethod
    def validate(cls, value: datetime, /) -> datetime:
        if value.tzinfo is None:
            raise ValueError('The datetime value must be timezone aware')
        return value.astimezone(UTC).replace(microsecond=0)


class CertificateAdapter:
    @classmethod
    def from_wire(cls, buffer: BytesIO) -> Certificate:
        return deserialize_certificate(Opaque16Adapter.from_wire(buffer))

    @classmethod
    def to_wire(cls, value: Certificate, /) -> bytes:
        return Opaque16Adapter.to_wire(serialize_certificate(value))

    @classmethod
    def validate(cls, value: Certificate, /) -> Certificate:
        if not isinstance(value, Certificate):
            raise TypeError(f'Expected a certificate, got {value!r}')
        return value


class CertificateListAdapter(ListAdapter[Certificate], item=CertificateAdapter):
    pass


class PublicKeyAdapter:
    @classmethod
    def from_wire(cls, buffer: BytesIO) -> PublicKey:
        return deserialize_public_key(Opaque16Adapter.from_wire(buffer))

    @classmethod
    def to_wire(cls, value: PublicKey, /) -> bytes:
        return Opaque16Adapter.to_wire(serialize_public_key(value))

    @classmethod
    def validate(cls, value: PublicKey, /) -> PublicKey:
        serialize_public_key(value)  # raises for objects that are not public keys
        return value


class X25519PublicKeyAdapter:
    _size_: ClassVar[int] = 32

    @classmethod
    def from_wire(cls, buffer: BytesIO) -> X25519PublicKey:
        return X25519PublicKey.from_public_bytes(_read(buffer, cls._size_, 'an X25519 public key'))

    @classmethod
    def to_wire(cls, value: X25519PublicKey, /) -> bytes:
        return value.public_bytes_raw()

    @classmethod
    def validate(cls, value: X25519PublicKey, /) -> X25519PublicKey:
        if not isinstance(value, X25519PublicKey):
            raise TypeError(f'Expected an X25519 public key, got {value!r}')
        return value


# Structures

class Field[T]:
    name: str = NotImplemented

    def __init__(self, adapter: type[DataWireAdapter[T]], *, default: T = NotImplemented) -> None:
        self.adapter = adapter
        if default is NotImplemented and issubclass(adapter, LiteralBytesAdapter):
            default = adapter._static_value_  # pyright: ignore[reportAssignmentType]
        self.default = default

    def __set_name__(self, owner: type, name: str) -> None:
        if self.name is NotImplemented:
            self.name = name
        elif name != self.name:
            raise TypeError(f'cannot assign the same {self.__class__.__name__} to two different names: {self.name} and {name}')

    @overload
    def __get__(self, instance: None, owner: type | None = None) -> Self: ...

    @overload
    def __get__(self, instance: object, owner: type | None = None) -> T: ...

    def __get__(self, instance: object | None, owner: type | None = None) -> Self | T:
        if instance is None:
            return self
        try:
            return instance.__dict__[self.name]
        except KeyError as exc:
            raise AttributeError(f'{instance.__class__.__qualname__!r} object has no attribute {self.name!r}') from exc

    def __set__(self, instance: object, value: T) -> None:
        instance.__dict__[self.name] = self.adapter.validate(value)

    def from_wire(self, instance: object, buffer: BytesIO) -> None:
        instance.__dict__[self.name] = self.adapter.from_wire(buffer)

    def to_wire(self, instance: object) -> bytes:
        return self.adapter.to_wire(self.__get__(instance))


class Structure:
    """
    A sequence of fields that is encoded on the wire by concatenating the
    encoding of its fields in the order in which they were defined.

    A structure can itself be used as the adapter of a field in another
    structure. Decoding a structure from a bytes-like object (as opposed
    to a stream) requires all the data to be consumed.
    """

    _fields_: ClassVar[dict[str, Field[Any]]] = {}

    def __init_subclass__(cls, **kw: object) -> None:
        super().__init_subclass__(**kw)
        cls._fields_ = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, Field)}

    def __init__(self, **kw: object) -> None:
        if unexpected := set(kw).difference(self._fields_):
            raise TypeError(f'Got an unexpected keyword argument {unexpected.pop()!r}')
        for name, field in self._fields_.items():
            if name in kw:
                setattr(self, name, kw[name])
            elif field.default is not NotImplemented:
                setattr(self, name, field.default)
            else:
                raise TypeError(f'Missing a required keyword argument {name!r}')

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({', '.join(f'{name}={getattr(self, name)!r}' for name in self._fields_)})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, self.__class__):
            return all(getattr(self, name) == getattr(other, name) for name in self._fields_)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if isinstance(buffer, BytesIO):
            return cls._read_fields(buffer)
        stream = BytesIO(buffer)
        instance = cls._read_fields(stream)
        if stream.tell() != len(stream.getbuffer()):
            raise ValueError(f'Unexpected trailing data after {cls.__qualname__}')
        return instance

    @classmethod
    def _read_fields(cls, buffer: BytesIO) -> Self:
        instance = super().__new__(cls)
        for field in cls._fields_.values():
            field.from_wire(instance, buffer)
        return instance

    def to_wire(self) -> bytes:
        return b''.join(field.to_wire(self) for field in self._fields_.values())

    @classmethod
    def validate(cls, value: Self, /) -> Self:
        if not isinstance(value, cls):
            raise TypeError(f'Expected a {cls.__qualname__} instance, got {value!r}')
        return value
