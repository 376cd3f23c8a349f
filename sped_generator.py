"""
Gerador do arquivo SPED Fiscal (EFD ICMS/IPI).

Contém os leiautes dos registros emitidos, as funções que montam cada
registro a partir de uma entidade, o montador que impõe a hierarquia de
blocos (0 → C → D → H → 9) e o serializador para o texto delimitado.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from config import get_config
from exceptions import SpedIntegrityError, SpedValidationError
from formatters import (
    DELIMITADOR, formatar_data, formatar_quantidade, formatar_texto,
    formatar_valor, para_decimal, somente_digitos
)
from metrics import GenerationMetrics
from sped_models import (
    Bloco, Contabilista, DadosSped, DocumentoFiscal, Empresa, Inventario,
    ItemDocumento, ItemInventario, MotivoInventario, Participante, Produto, SpedConfig,
    TipoOperacao, TipoRegistro, Unidade
)

logger = logging.getLogger(__name__)


# =========================
# LAYOUTS DOS REGISTROS
# =========================

LAYOUTS = {
    # --- Bloco 0: Abertura, identificação e referências ---
    '0000': [
        'REG', 'COD_VER', 'COD_FIN', 'DT_INI', 'DT_FIN', 'NOME', 'CNPJ', 'CPF', 'UF',
        'IE', 'COD_MUN', 'IM', 'SUFRAMA', 'IND_PERFIL', 'IND_ATIV'
    ],
    '0001': ['REG', 'IND_MOV'],
    '0005': ['REG', 'FANTASIA', 'CEP', 'END', 'NUM', 'COMPL', 'BAIRRO', 'FONE', 'FAX', 'EMAIL'],
    '0100': [
        'REG', 'NOME', 'CPF', 'CRC', 'CNPJ', 'CEP', 'END', 'NUM', 'COMPL', 'BAIRRO',
        'FONE', 'FAX', 'EMAIL', 'COD_MUN'
    ],
    '0150': [
        'REG', 'COD_PART', 'NOME', 'COD_PAIS', 'CNPJ', 'CPF', 'IE', 'COD_MUN', 'SUFRAMA',
        'END', 'NUM', 'COMPL', 'BAIRRO'
    ],
    '0190': ['REG', 'UNID', 'DESCR'],
    '0200': [
        'REG', 'COD_ITEM', 'DESCR_ITEM', 'COD_BARRA', 'COD_ANT_ITEM', 'UNID_INV', 'TIPO_ITEM',
        'COD_NCM', 'EX_IPI', 'COD_GEN', 'COD_LST', 'ALIQ_ICMS', 'CEST'
    ],
    '0990': ['REG', 'QTD_LIN_0'],

    # --- Bloco C: Documentos Fiscais I ---
    'C001': ['REG', 'IND_MOV'],
    'C100': [
        'REG', 'IND_OPER', 'IND_EMIT', 'COD_PART', 'COD_MOD', 'COD_SIT', 'SER', 'NUM_DOC',
        'CHV_NFE', 'DT_DOC', 'DT_E_S', 'VL_DOC', 'IND_PGTO', 'VL_DESC', 'VL_ABAT_NT',
        'VL_MERC', 'IND_FRT', 'VL_FRT', 'VL_SEG', 'VL_OUT_DA', 'VL_BC_ICMS', 'VL_ICMS',
        'VL_BC_ICMS_ST', 'VL_ICMS_ST', 'VL_IPI', 'VL_PIS', 'VL_COFINS', 'VL_PIS_ST', 'VL_COFINS_ST'
    ],
    'C170': [
        'REG', 'NUM_ITEM', 'COD_ITEM', 'DESCR_COMPL', 'QTD', 'UNID', 'VL_ITEM', 'VL_DESC',
        'IND_MOV', 'CST_ICMS', 'CFOP', 'COD_NAT', 'VL_BC_ICMS', 'ALIQ_ICMS', 'VL_ICMS',
        'VL_BC_ICMS_ST', 'ALIQ_ST', 'VL_ICMS_ST', 'IND_APUR', 'CST_IPI', 'COD_ENQ',
        'VL_BC_IPI', 'ALIQ_IPI', 'VL_IPI', 'CST_PIS', 'VL_BC_PIS', 'ALIQ_PIS', 'QUANT_BC_PIS',
        'ALIQ_PIS_QUANT', 'VL_PIS', 'CST_COFINS', 'VL_BC_COFINS', 'ALIQ_COFINS', 'QUANT_BC_COFINS',
        'ALIQ_COFINS_QUANT', 'VL_COFINS', 'COD_CTA'
    ],
    'C190': [
        'REG', 'CST_ICMS', 'CFOP', 'ALIQ_ICMS', 'VL_OPR', 'VL_BC_ICMS', 'VL_ICMS',
        'VL_BC_ICMS_ST', 'VL_ICMS_ST', 'VL_RED_BC', 'VL_IPI', 'COD_OBS'
    ],
    'C990': ['REG', 'QTD_LIN_C'],

    # --- Bloco D: Documentos Fiscais II ---
    'D001': ['REG', 'IND_MOV'],
    'D100': [
        'REG', 'IND_OPER', 'IND_EMIT', 'COD_PART', 'COD_MOD', 'COD_SIT', 'SER', 'SUB', 'NUM_DOC',
        'CHV_CTE', 'DT_DOC', 'DT_A_P', 'TP_CT_E', 'CHV_CTE_REF', 'VL_DOC', 'VL_DESC', 'IND_FRT',
        'VL_SERV', 'VL_BC_ICMS', 'VL_ICMS', 'VL_NT', 'COD_INF', 'COD_CTA', 'COD_MUN_ORIG', 'COD_MUN_DEST'
    ],
    'D190': [
        'REG', 'CST_ICMS', 'CFOP', 'ALIQ_ICMS', 'VL_OPR', 'VL_BC_ICMS',
        'VL_ICMS', 'VL_RED_BC', 'COD_OBS'
    ],
    'D990': ['REG', 'QTD_LIN_D'],

    # --- Bloco H: Inventário físico ---
    'H001': ['REG', 'IND_MOV'],
    'H005': ['REG', 'DT_INV', 'VL_INV', 'MOT_INV'],
    'H010': [
        'REG', 'COD_ITEM', 'UNID', 'QTD', 'VL_UNIT', 'VL_ITEM', 'IND_PROP', 'COD_PART',
        'TXT_COMPL', 'COD_CTA', 'VL_ITEM_IR'
    ],
    'H020': ['REG', 'CST_ICMS', 'BC_ICMS', 'VL_ICMS'],
    'H990': ['REG', 'QTD_LIN_H'],

    # --- Bloco 9: Controle e encerramento ---
    '9001': ['REG', 'IND_MOV'],
    '9900': ['REG', 'REG_BLC', 'QTD_REG_BLC'],
    '9990': ['REG', 'QTD_LIN_9'],
    '9999': ['REG', 'QTD_LIN'],
}

# Registros de abertura e encerramento por bloco
ABERTURAS = {
    Bloco.ZERO: TipoRegistro.R0001,
    Bloco.C: TipoRegistro.C001,
    Bloco.D: TipoRegistro.D001,
    Bloco.H: TipoRegistro.H001,
}

ENCERRAMENTOS = {
    Bloco.ZERO: TipoRegistro.R0990,
    Bloco.C: TipoRegistro.C990,
    Bloco.D: TipoRegistro.D990,
    Bloco.H: TipoRegistro.H990,
}


@dataclass(frozen=True)
class RegistroSped:
    """Um registro físico: código seguido dos campos já formatados."""
    tipo: TipoRegistro
    campos: Tuple[str, ...]

    @property
    def codigo(self) -> str:
        return self.tipo.value

    def to_line(self) -> str:
        return f"{DELIMITADOR}{DELIMITADOR.join((self.codigo,) + self.campos)}{DELIMITADOR}"


def montar_registro(tipo: TipoRegistro, valores: Dict[str, Any]) -> RegistroSped:
    """
    Monta um registro posicionando os valores conforme o leiaute.

    Campos ausentes em ``valores`` saem vazios, de modo que a posição de
    cada campo é fixa independentemente da presença do valor.

    Raises:
        SpedValidationError: Se algum nome de campo não existir no leiaute
    """
    layout = LAYOUTS[tipo.value][1:]
    desconhecidos = set(valores) - set(layout)
    if desconhecidos:
        raise SpedValidationError(
            f"Campos fora do leiaute: {', '.join(sorted(desconhecidos))}",
            registro=tipo.value
        )
    return RegistroSped(tipo, tuple(formatar_texto(valores.get(nome)) for nome in layout))


def _valor(valor, casas: int = 2) -> str:
    """Valor monetário obrigatório: ausência vira zero."""
    return formatar_valor(valor or 0, casas)


# =========================
# BLOCO 0
# =========================

def registro_0000(config: SpedConfig) -> RegistroSped:
    empresa = config.empresa
    return montar_registro(TipoRegistro.R0000, {
        'COD_VER': get_config('sped.layout_version', '017'),
        'COD_FIN': empresa.finalidade,
        'DT_INI': formatar_data(config.data_inicial),
        'DT_FIN': formatar_data(config.data_final),
        'NOME': empresa.razao_social,
        'CNPJ': somente_digitos(empresa.cnpj),
        'UF': empresa.uf,
        'IE': somente_digitos(empresa.ie),
        'COD_MUN': empresa.codigo_municipio,
        'IND_PERFIL': empresa.perfil,
        'IND_ATIV': empresa.atividade,
    })


def registro_abertura(tipo: TipoRegistro, tem_dados: bool) -> RegistroSped:
    """Abertura de bloco (X001): 0 = bloco com dados, 1 = sem dados."""
    return montar_registro(tipo, {'IND_MOV': '0' if tem_dados else '1'})


def registro_encerramento(tipo: TipoRegistro, qtd_linhas: int) -> RegistroSped:
    """Encerramento de bloco (X990, 9990, 9999) com a quantidade de linhas."""
    campo = LAYOUTS[tipo.value][1]
    return montar_registro(tipo, {campo: qtd_linhas})


def registro_0005(empresa: Empresa) -> RegistroSped:
    return montar_registro(TipoRegistro.R0005, {
        'FANTASIA': empresa.nome_fantasia or empresa.razao_social,
        'CEP': somente_digitos(empresa.cep),
        'END': empresa.endereco,
        'NUM': empresa.numero,
        'COMPL': empresa.complemento,
        'BAIRRO': empresa.bairro,
        'FONE': somente_digitos(empresa.telefone),
        'EMAIL': empresa.email,
    })


def registro_0100(contador: Contabilista) -> RegistroSped:
    return montar_registro(TipoRegistro.R0100, {
        'NOME': contador.nome,
        'CPF': somente_digitos(contador.cpf),
        'CRC': contador.crc,
        'FONE': somente_digitos(contador.telefone),
        'EMAIL': contador.email,
    })


def registro_0150(participante: Participante) -> RegistroSped:
    return montar_registro(TipoRegistro.R0150, {
        'COD_PART': participante.codigo,
        'NOME': participante.nome,
        'COD_PAIS': participante.codigo_pais,
        'CNPJ': participante.cnpj,
        'CPF': participante.cpf,
        'IE': somente_digitos(participante.ie),
        'COD_MUN': participante.codigo_municipio,
        'SUFRAMA': participante.suframa,
        'END': participante.endereco,
        'NUM': participante.numero,
        'COMPL': participante.complemento,
        'BAIRRO': participante.bairro,
    })


def registro_0190(unidade: Unidade) -> RegistroSped:
    return montar_registro(TipoRegistro.R0190, {
        'UNID': unidade.codigo,
        'DESCR': unidade.descricao,
    })


def registro_0200(produto: Produto) -> RegistroSped:
    return montar_registro(TipoRegistro.R0200, {
        'COD_ITEM': produto.codigo,
        'DESCR_ITEM': produto.descricao,
        'COD_BARRA': produto.codigo_barras,
        'UNID_INV': produto.unidade,
        'TIPO_ITEM': produto.tipo_item,
        'COD_NCM': somente_digitos(produto.ncm),
        'EX_IPI': produto.ex_tipi,
        'COD_GEN': produto.genero,
        'ALIQ_ICMS': formatar_valor(produto.aliquota_icms),
    })


# =========================
# BLOCOS C e D
# =========================

def registro_c100(doc: DocumentoFiscal) -> RegistroSped:
    return montar_registro(TipoRegistro.C100, {
        'IND_OPER': doc.tipo.value,
        'IND_EMIT': doc.emitente.value,
        'COD_PART': doc.participante_codigo,
        'COD_MOD': doc.modelo,
        'COD_SIT': doc.situacao,
        'SER': doc.serie,
        'NUM_DOC': doc.numero,
        'CHV_NFE': somente_digitos(doc.chave_acesso),
        'DT_DOC': formatar_data(doc.data_emissao),
        'DT_E_S': formatar_data(doc.data_entrada_saida),
        'VL_DOC': _valor(doc.valor_total),
        'IND_PGTO': doc.indicador_pagamento,
        'VL_DESC': _valor(doc.valor_desconto),
        'VL_ABAT_NT': _valor(0),
        'VL_MERC': _valor(doc.valor_produtos),
        'IND_FRT': doc.indicador_frete,
        'VL_FRT': _valor(doc.valor_frete),
        'VL_SEG': _valor(doc.valor_seguro),
        'VL_OUT_DA': _valor(doc.valor_outros),
        'VL_BC_ICMS': _valor(doc.base_calculo_icms),
        'VL_ICMS': _valor(doc.valor_icms),
        'VL_BC_ICMS_ST': _valor(doc.base_calculo_icms_st),
        'VL_ICMS_ST': _valor(doc.valor_icms_st),
        'VL_IPI': _valor(doc.valor_ipi),
        'VL_PIS': _valor(doc.valor_pis),
        'VL_COFINS': _valor(doc.valor_cofins),
    })


def registro_c170(item: ItemDocumento, numero_item: int) -> RegistroSped:
    return montar_registro(TipoRegistro.C170, {
        'NUM_ITEM': numero_item,
        'COD_ITEM': item.produto_codigo,
        'DESCR_COMPL': item.descricao,
        'QTD': formatar_quantidade(item.quantidade),
        'UNID': item.unidade,
        'VL_ITEM': _valor(item.valor_total),
        'VL_DESC': _valor(item.valor_desconto),
        'IND_MOV': '0',
        'CST_ICMS': item.cst_icms,
        'CFOP': item.cfop,
        'VL_BC_ICMS': _valor(item.base_calculo_icms),
        'ALIQ_ICMS': _valor(item.aliquota_icms),
        'VL_ICMS': _valor(item.valor_icms),
        'CST_IPI': item.cst_ipi,
        'VL_BC_IPI': _valor(item.base_calculo_ipi),
        'ALIQ_IPI': _valor(item.aliquota_ipi),
        'VL_IPI': _valor(item.valor_ipi),
        'CST_PIS': item.cst_pis,
        'VL_BC_PIS': _valor(item.base_calculo_pis),
        'ALIQ_PIS': _valor(item.aliquota_pis, 4),
        'VL_PIS': _valor(item.valor_pis),
        'CST_COFINS': item.cst_cofins,
        'VL_BC_COFINS': _valor(item.base_calculo_cofins),
        'ALIQ_COFINS': _valor(item.aliquota_cofins, 4),
        'VL_COFINS': _valor(item.valor_cofins),
    })


def agrupar_analitico(itens: Iterable[ItemDocumento]) -> List[Dict[str, Any]]:
    """
    Totaliza os itens por combinação de CST, CFOP e alíquota de ICMS.

    A ordem dos grupos segue a primeira ocorrência de cada combinação.
    """
    grupos: Dict[Tuple[str, str, Decimal], Dict[str, Any]] = {}
    for item in itens:
        aliquota = para_decimal(item.aliquota_icms or 0)
        chave = (item.cst_icms, item.cfop, aliquota)
        grupo = grupos.setdefault(chave, {
            'cst_icms': item.cst_icms,
            'cfop': item.cfop,
            'aliquota_icms': aliquota,
            'valor_operacao': Decimal(0),
            'base_calculo_icms': Decimal(0),
            'valor_icms': Decimal(0),
            'valor_ipi': Decimal(0),
        })
        valor_ipi = para_decimal(item.valor_ipi or 0)
        grupo['valor_operacao'] += (
            para_decimal(item.valor_total or 0) - para_decimal(item.valor_desconto or 0) + valor_ipi
        )
        grupo['base_calculo_icms'] += para_decimal(item.base_calculo_icms or 0)
        grupo['valor_icms'] += para_decimal(item.valor_icms or 0)
        grupo['valor_ipi'] += valor_ipi
    return list(grupos.values())


def registro_c190(grupo: Dict[str, Any]) -> RegistroSped:
    return montar_registro(TipoRegistro.C190, {
        'CST_ICMS': grupo['cst_icms'],
        'CFOP': grupo['cfop'],
        'ALIQ_ICMS': _valor(grupo['aliquota_icms']),
        'VL_OPR': _valor(grupo['valor_operacao']),
        'VL_BC_ICMS': _valor(grupo['base_calculo_icms']),
        'VL_ICMS': _valor(grupo['valor_icms']),
        'VL_BC_ICMS_ST': _valor(0),
        'VL_ICMS_ST': _valor(0),
        'VL_RED_BC': _valor(0),
        'VL_IPI': _valor(grupo['valor_ipi']),
    })


def registro_d100(doc: DocumentoFiscal) -> RegistroSped:
    return montar_registro(TipoRegistro.D100, {
        'IND_OPER': doc.tipo.value,
        'IND_EMIT': doc.emitente.value,
        'COD_PART': doc.participante_codigo,
        'COD_MOD': doc.modelo,
        'COD_SIT': doc.situacao,
        'SER': doc.serie,
        'NUM_DOC': doc.numero,
        'CHV_CTE': somente_digitos(doc.chave_acesso),
        'DT_DOC': formatar_data(doc.data_emissao),
        'DT_A_P': formatar_data(doc.data_entrada_saida),
        'TP_CT_E': '0',
        'VL_DOC': _valor(doc.valor_total),
        'VL_DESC': _valor(doc.valor_desconto),
        'IND_FRT': doc.indicador_frete,
        'VL_SERV': _valor(doc.valor_produtos),
        'VL_BC_ICMS': _valor(doc.base_calculo_icms),
        'VL_ICMS': _valor(doc.valor_icms),
        'VL_NT': _valor(0),
    })


def registro_d190(grupo: Dict[str, Any]) -> RegistroSped:
    return montar_registro(TipoRegistro.D190, {
        'CST_ICMS': grupo['cst_icms'],
        'CFOP': grupo['cfop'],
        'ALIQ_ICMS': _valor(grupo['aliquota_icms']),
        'VL_OPR': _valor(grupo['valor_operacao']),
        'VL_BC_ICMS': _valor(grupo['base_calculo_icms']),
        'VL_ICMS': _valor(grupo['valor_icms']),
        'VL_RED_BC': _valor(0),
    })


# =========================
# BLOCO H
# =========================

def registro_h005(inventario: Inventario, valor_total: Decimal) -> RegistroSped:
    return montar_registro(TipoRegistro.H005, {
        'DT_INV': formatar_data(inventario.data),
        'VL_INV': _valor(valor_total),
        'MOT_INV': inventario.motivo.value,
    })


def registro_h010(item: ItemInventario) -> RegistroSped:
    return montar_registro(TipoRegistro.H010, {
        'COD_ITEM': item.produto_codigo,
        'UNID': item.unidade,
        'QTD': formatar_quantidade(item.quantidade),
        'VL_UNIT': _valor(item.valor_unitario, 6),
        'VL_ITEM': _valor(item.valor_total),
        'IND_PROP': item.indicador_propriedade.value,
        'COD_PART': item.participante_codigo,
        'TXT_COMPL': item.descricao_complementar,
        'VL_ITEM_IR': _valor(item.valor_total),
    })


def registro_h020(item: ItemInventario) -> RegistroSped:
    return montar_registro(TipoRegistro.H020, {
        'CST_ICMS': item.cst_icms,
        'BC_ICMS': _valor(item.base_calculo_icms),
        'VL_ICMS': _valor(item.valor_icms),
    })


# =========================
# BLOCO 9
# =========================

def registro_9900(codigo: str, quantidade: int) -> RegistroSped:
    return montar_registro(TipoRegistro.R9900, {
        'REG_BLC': codigo,
        'QTD_REG_BLC': quantidade,
    })


# Documento → (registro de cabeçalho, registro analítico) por bloco
REGISTROS_DOCUMENTO: Dict[Bloco, Tuple[Callable, Callable]] = {
    Bloco.C: (registro_c100, registro_c190),
    Bloco.D: (registro_d100, registro_d190),
}


# =========================
# MONTADOR DE BLOCOS
# =========================

def _unicos(itens: Iterable, chave: Callable) -> List:
    """Remove duplicados preservando a primeira ocorrência e a ordem de entrada."""
    vistos = set()
    resultado = []
    for item in itens:
        k = chave(item)
        if k in vistos:
            continue
        vistos.add(k)
        resultado.append(item)
    return resultado


class SpedAssembler:
    """
    Monta a lista ordenada de registros do arquivo.

    Cada registro emitido incrementa os contadores de ``GenerationMetrics``;
    os encerramentos de bloco e o Bloco 9 são escritos a partir desses
    contadores.
    """

    def __init__(self, dados: DadosSped, metrics: Optional[GenerationMetrics] = None):
        self.dados = dados
        self.metrics = metrics if metrics is not None else GenerationMetrics()
        self.registros: List[RegistroSped] = []

    def montar(self) -> List[RegistroSped]:
        """
        Monta todos os blocos na ordem do leiaute.

        Returns:
            Lista de registros na ordem de emissão

        Raises:
            SpedIntegrityError: Se a contagem acumulada divergir dos registros emitidos
        """
        if self.registros:
            return self.registros

        self._bloco_0()
        self._bloco_documentos(Bloco.C)
        self._bloco_documentos(Bloco.D)
        self._bloco_h()
        self._bloco_9()
        self._conferir_contagem()
        self.metrics.finalizar()

        logger.info(f"Montagem concluída: {len(self.registros)} registros")
        return self.registros

    def _emitir(self, registro: RegistroSped) -> None:
        self.registros.append(registro)
        self.metrics.increment_registro(registro.codigo)

    def _encerrar(self, bloco: Bloco) -> None:
        qtd = self.metrics.linhas_por_bloco[bloco.value] + 1
        self._emitir(registro_encerramento(ENCERRAMENTOS[bloco], qtd))
        logger.debug(f"Bloco {bloco.value}: {qtd} linhas")

    def unidades(self) -> List[Unidade]:
        """
        Unidades do Bloco 0.

        Sem lista explícita, são derivadas das unidades referenciadas por
        produtos, itens de documento e itens de inventário.
        """
        if self.dados.unidades is not None:
            return _unicos(self.dados.unidades, lambda u: u.codigo)

        codigos = [p.unidade for p in self.dados.produtos]
        for doc in self.dados.documentos:
            codigos.extend(item.unidade for item in doc.itens)
        codigos.extend(item.unidade for item in self.itens_inventario())

        descricoes = get_config('sped.units', {}) or {}
        return [
            Unidade(codigo, descricoes.get(codigo, codigo))
            for codigo in _unicos((c for c in codigos if c), lambda c: c)
        ]

    def itens_inventario(self) -> List[ItemInventario]:
        inventario = self.dados.inventario
        if inventario is None:
            return []
        return [item for item in inventario.itens if (item.quantidade or 0) > 0]

    def _bloco_0(self) -> None:
        config = self.dados.config
        self._emitir(registro_0000(config))
        self._emitir(registro_abertura(TipoRegistro.R0001, True))

        if config.empresa.tem_dados_complementares:
            self._emitir(registro_0005(config.empresa))
        if config.contador is not None:
            self._emitir(registro_0100(config.contador))

        participantes = _unicos(self.dados.participantes, lambda p: p.codigo)
        if len(participantes) < len(self.dados.participantes):
            self.metrics.add_warning(
                f"{len(self.dados.participantes) - len(participantes)} participante(s) duplicado(s) ignorado(s)"
            )
        for participante in participantes:
            self._emitir(registro_0150(participante))

        for unidade in self.unidades():
            self._emitir(registro_0190(unidade))

        for produto in _unicos(self.dados.produtos, lambda p: p.codigo):
            self._emitir(registro_0200(produto))

        self._encerrar(Bloco.ZERO)

    def _bloco_documentos(self, bloco: Bloco) -> None:
        documentos = [d for d in self.dados.documentos if d.bloco is bloco]
        # Entradas antes das saídas, cada grupo na ordem de entrada
        documentos = (
            [d for d in documentos if d.tipo is TipoOperacao.ENTRADA] +
            [d for d in documentos if d.tipo is TipoOperacao.SAIDA]
        )

        self._emitir(registro_abertura(ABERTURAS[bloco], bool(documentos)))

        cabecalho, analitico = REGISTROS_DOCUMENTO[bloco]
        for doc in documentos:
            self._emitir(cabecalho(doc))
            if bloco is Bloco.C:
                for numero, item in enumerate(doc.itens, 1):
                    self._emitir(registro_c170(item, numero))
            for grupo in agrupar_analitico(doc.itens):
                self._emitir(analitico(grupo))
            self.metrics.increment_documento(bloco.value)

        self._encerrar(bloco)

    def _bloco_h(self) -> None:
        inventario = self.dados.inventario
        itens = self.itens_inventario()
        if inventario is not None:
            self.metrics.itens_inventario_descartados = len(inventario.itens) - len(itens)

        self._emitir(registro_abertura(TipoRegistro.H001, bool(itens)))
        if itens:
            total = sum((para_decimal(item.valor_total or 0) for item in itens), Decimal(0))
            self._emitir(registro_h005(inventario, total))
            complementar = inventario.motivo is not MotivoInventario.FINAL_PERIODO
            for item in itens:
                self._emitir(registro_h010(item))
                if complementar:
                    self._emitir(registro_h020(item))
        self._encerrar(Bloco.H)

    def _bloco_9(self) -> None:
        self._emitir(registro_abertura(TipoRegistro.R9001, True))

        contagem = dict(self.metrics.registros_por_tipo)
        contagem[TipoRegistro.R9900.value] = 0
        contagem[TipoRegistro.R9990.value] = 1
        contagem[TipoRegistro.R9999.value] = 1
        contagem[TipoRegistro.R9900.value] = len(contagem)

        for codigo, quantidade in contagem.items():
            self._emitir(registro_9900(codigo, quantidade))

        # 9990 e 9999 também pertencem ao Bloco 9
        qtd_bloco_9 = self.metrics.linhas_por_bloco[Bloco.NOVE.value] + 2
        self._emitir(registro_encerramento(TipoRegistro.R9990, qtd_bloco_9))
        self._emitir(registro_encerramento(TipoRegistro.R9999, self.metrics.total_linhas + 1))

    def _conferir_contagem(self) -> None:
        emitidos = Counter(r.codigo for r in self.registros)
        if emitidos != Counter(dict(self.metrics.registros_por_tipo)):
            logger.error("Contagem acumulada diverge dos registros emitidos")
            raise SpedIntegrityError("Contagem de registros divergente da emissão")

        declarados = {
            r.campos[0]: int(r.campos[1]) for r in self.registros if r.tipo is TipoRegistro.R9900
        }
        if declarados != dict(emitidos):
            logger.error(f"9900 declarados: {declarados} / emitidos: {dict(emitidos)}")
            raise SpedIntegrityError("Registros 9900 divergentes da emissão", '9900', '9999')


# =========================
# SERIALIZAÇÃO
# =========================

def serializar_registros(registros: Iterable[RegistroSped], terminador: Optional[str] = None) -> str:
    """
    Converte registros em texto: ``|REG|campo|...|`` com terminador em toda linha.
    """
    if terminador is None:
        terminador = get_config('sped.line_terminator', '\r\n')
    return ''.join(f"{registro.to_line()}{terminador}" for registro in registros)


def gerar_sped_fiscal(dados: DadosSped, metrics: Optional[GenerationMetrics] = None) -> str:
    """
    Gera o conteúdo do arquivo SPED Fiscal.

    Args:
        dados: Configuração e coleções do período
        metrics: Métricas a preencher (opcional)

    Returns:
        Conteúdo do arquivo TXT
    """
    assembler = SpedAssembler(dados, metrics)
    return serializar_registros(assembler.montar())
