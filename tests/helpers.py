from datetime import date
from decimal import Decimal

from sped_models import DocumentoFiscal, ItemDocumento


def item(produto="P1", qtd=10, valor=Decimal("100.00"), cfop="5102", cst="000", aliquota=18, unidade="UN"):
    return ItemDocumento(
        produto_codigo=produto,
        quantidade=qtd,
        unidade=unidade,
        valor_unitario=valor / qtd,
        valor_total=valor,
        cfop=cfop,
        cst_icms=cst,
        base_calculo_icms=valor,
        aliquota_icms=aliquota,
        valor_icms=valor * Decimal(aliquota) / 100,
    )


def documento(tipo, numero, itens, participante, modelo="55", emissao=date(2026, 3, 10), **extra):
    total = sum((i.valor_total for i in itens), Decimal(0))
    return DocumentoFiscal(
        tipo=tipo,
        modelo=modelo,
        serie="1",
        numero=numero,
        data_emissao=emissao,
        participante_codigo=participante,
        valor_total=extra.pop("valor_total", total),
        valor_produtos=extra.pop("valor_produtos", total),
        itens=itens,
        **extra,
    )


def linhas(conteudo):
    """Linhas do arquivo sem o terminador final."""
    return conteudo.split("\r\n")[:-1]


def registros(conteudo, codigo):
    """Campos (código incluído) de cada linha do registro informado."""
    return [l.split("|")[1:-1] for l in linhas(conteudo) if l.startswith(f"|{codigo}|")]


def codigos(conteudo):
    return [l.split("|")[1] for l in linhas(conteudo)]
