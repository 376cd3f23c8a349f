"""
Modelo de dados do gerador SPED Fiscal (EFD ICMS/IPI).

Todas as entidades são somente leitura para o gerador: são montadas a partir
das consultas da fonte de dados, transformadas em registros e descartadas.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from config import get_config
from exceptions import SpedValidationError
from formatters import Numero, somente_digitos


# =========================
# ENUMERAÇÕES E CONSTANTES
# =========================

class TipoOperacao(Enum):
    """Indicador de tipo de operação."""
    ENTRADA = '0'
    SAIDA = '1'

    @classmethod
    def parse(cls, valor) -> 'TipoOperacao':
        if isinstance(valor, cls):
            return valor
        texto = str(valor).strip().lower()
        if texto in ('0', 'entrada'):
            return cls.ENTRADA
        if texto in ('1', 'saida', 'saída'):
            return cls.SAIDA
        raise SpedValidationError("Tipo de operação inválido", campo='tipo', valor=str(valor))


class IndicadorEmitente(Enum):
    """Indicador de emitente do documento."""
    EMISSAO_PROPRIA = '0'
    TERCEIROS = '1'


class IndicadorPropriedade(Enum):
    """Indicador de propriedade/posse do item inventariado."""
    PROPRIO_EM_POSSE = '0'
    PROPRIO_COM_TERCEIROS = '1'
    TERCEIROS_EM_POSSE = '2'


class MotivoInventario(Enum):
    """Motivo do inventário (H005)."""
    FINAL_PERIODO = '01'
    MUDANCA_TRIBUTACAO = '02'
    BAIXA_CADASTRAL = '03'
    REGIME_PAGAMENTO = '04'
    DETERMINACAO_FISCO = '05'


# Modelos de documento escriturados no Bloco D (serviços de transporte/comunicação)
MODELOS_BLOCO_D = {'07', '08', '8B', '09', '10', '11', '26', '27', '57', '63', '67'}


class Bloco(Enum):
    """Blocos do arquivo, na ordem em que são emitidos."""
    ZERO = '0'
    C = 'C'
    D = 'D'
    H = 'H'
    NOVE = '9'

    @classmethod
    def para_modelo(cls, modelo: str) -> 'Bloco':
        """Bloco de escrituração de um documento conforme o código do modelo."""
        return cls.D if str(modelo).strip().upper() in MODELOS_BLOCO_D else cls.C


class TipoRegistro(Enum):
    """Códigos de registro emitidos pelo gerador."""
    R0000 = '0000'
    R0001 = '0001'
    R0005 = '0005'
    R0100 = '0100'
    R0150 = '0150'
    R0190 = '0190'
    R0200 = '0200'
    R0990 = '0990'
    C001 = 'C001'
    C100 = 'C100'
    C170 = 'C170'
    C190 = 'C190'
    C990 = 'C990'
    D001 = 'D001'
    D100 = 'D100'
    D190 = 'D190'
    D990 = 'D990'
    H001 = 'H001'
    H005 = 'H005'
    H010 = 'H010'
    H020 = 'H020'
    H990 = 'H990'
    R9001 = '9001'
    R9900 = '9900'
    R9990 = '9990'
    R9999 = '9999'

    @property
    def bloco(self) -> Bloco:
        return Bloco(self.value[0])


# =========================
# ENTIDADES
# =========================

def _parse_data(valor) -> Optional[date]:
    if valor is None or valor == '':
        return None
    if isinstance(valor, datetime):
        return valor.date()
    if isinstance(valor, date):
        return valor
    return datetime.strptime(str(valor), '%Y-%m-%d').date()


def _campos(cls, dados: Dict[str, Any]) -> Dict[str, Any]:
    """
    Filtra as chaves de um dicionário para os campos do dataclass.

    Campos anotados como ``str`` são convertidos para texto, pois o YAML
    entrega CNPJs e códigos numéricos sem aspas como int. Códigos com zero
    à esquerda só chegam intactos se lidos com ``carregar_yaml``.
    """
    campos = cls.__dataclass_fields__
    valores = {}
    for nome, valor in dados.items():
        if nome not in campos:
            continue
        if campos[nome].type in (str, 'str') and valor is not None:
            valor = str(valor)
        valores[nome] = valor
    return valores


@dataclass(frozen=True)
class Empresa:
    """Identificação fiscal da empresa (registros 0000 e 0005)."""
    id: str
    razao_social: str
    cnpj: str = ''
    ie: str = ''
    uf: str = ''
    codigo_municipio: str = ''
    finalidade: str = field(default_factory=lambda: get_config('sped.default_finalidade', '0'))
    perfil: str = field(default_factory=lambda: get_config('sped.default_perfil', 'A'))
    atividade: str = field(default_factory=lambda: get_config('sped.default_atividade', '0'))
    nome_fantasia: str = ''
    cep: str = ''
    endereco: str = ''
    numero: str = ''
    complemento: str = ''
    bairro: str = ''
    telefone: str = ''
    email: str = ''

    @property
    def tem_dados_complementares(self) -> bool:
        return any((self.nome_fantasia, self.cep, self.endereco, self.telefone, self.email))

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'Empresa':
        return cls(**_campos(cls, dados))


@dataclass(frozen=True)
class Contabilista:
    """Dados do contabilista responsável (registro 0100)."""
    nome: str
    cpf: str
    crc: str
    email: str = ''
    telefone: str = ''


@dataclass(frozen=True)
class SpedConfig:
    """Período de apuração e identidade fiscal do arquivo."""
    data_inicial: date
    data_final: date
    empresa: Empresa
    contador: Optional[Contabilista] = None


@dataclass(frozen=True)
class Participante:
    """Fornecedor (F{n}) ou cliente (C{n}) referenciado nos documentos."""
    codigo: str
    nome: str
    cnpj_cpf: str = ''
    codigo_pais: str = field(default_factory=lambda: get_config('sped.default_country_code', '1058'))
    ie: str = ''
    codigo_municipio: str = ''
    suframa: str = ''
    endereco: str = ''
    numero: str = ''
    complemento: str = ''
    bairro: str = ''

    @property
    def cnpj(self) -> str:
        digitos = somente_digitos(self.cnpj_cpf)
        return digitos if len(digitos) == 14 else ''

    @property
    def cpf(self) -> str:
        digitos = somente_digitos(self.cnpj_cpf)
        return digitos if len(digitos) == 11 else ''

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'Participante':
        return cls(**_campos(cls, dados))


@dataclass(frozen=True)
class Produto:
    """Item (registro 0200)."""
    codigo: str
    descricao: str
    unidade: str
    ncm: str = ''
    codigo_barras: str = ''
    tipo_item: str = field(default_factory=lambda: get_config('sped.default_item_type', '00'))
    ex_tipi: str = ''
    genero: str = ''
    aliquota_icms: Optional[Numero] = None

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'Produto':
        return cls(**_campos(cls, dados))


@dataclass(frozen=True)
class Unidade:
    """Unidade de medida (registro 0190)."""
    codigo: str
    descricao: str


@dataclass(frozen=True)
class ItemDocumento:
    """Item de documento fiscal. A numeração no arquivo é posicional."""
    produto_codigo: str
    quantidade: Numero
    unidade: str
    valor_unitario: Numero
    valor_total: Numero
    cfop: str
    cst_icms: str = '00'
    descricao: str = ''
    valor_desconto: Numero = 0
    base_calculo_icms: Numero = 0
    aliquota_icms: Numero = 0
    valor_icms: Numero = 0
    cst_ipi: str = ''
    base_calculo_ipi: Numero = 0
    aliquota_ipi: Numero = 0
    valor_ipi: Numero = 0
    cst_pis: str = ''
    base_calculo_pis: Numero = 0
    aliquota_pis: Numero = 0
    valor_pis: Numero = 0
    cst_cofins: str = ''
    base_calculo_cofins: Numero = 0
    aliquota_cofins: Numero = 0
    valor_cofins: Numero = 0

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'ItemDocumento':
        return cls(**_campos(cls, dados))


@dataclass(frozen=True)
class DocumentoFiscal:
    """Documento fiscal de entrada ou saída com seus itens."""
    tipo: TipoOperacao
    modelo: str
    serie: str
    numero: int
    data_emissao: date
    participante_codigo: str
    valor_total: Numero
    valor_produtos: Numero
    itens: List[ItemDocumento] = field(default_factory=list)
    chave_acesso: str = ''
    data_entrada_saida: Optional[date] = None
    situacao: str = '00'
    indicador_emitente: Optional[IndicadorEmitente] = None
    indicador_frete: str = '9'
    indicador_pagamento: str = '0'
    valor_desconto: Numero = 0
    valor_frete: Numero = 0
    valor_seguro: Numero = 0
    valor_outros: Numero = 0
    base_calculo_icms: Numero = 0
    valor_icms: Numero = 0
    base_calculo_icms_st: Numero = 0
    valor_icms_st: Numero = 0
    valor_ipi: Numero = 0
    valor_pis: Numero = 0
    valor_cofins: Numero = 0

    @property
    def bloco(self) -> Bloco:
        return Bloco.para_modelo(self.modelo)

    @property
    def emitente(self) -> IndicadorEmitente:
        if self.indicador_emitente is not None:
            return self.indicador_emitente
        if self.tipo is TipoOperacao.SAIDA:
            return IndicadorEmitente.EMISSAO_PROPRIA
        return IndicadorEmitente.TERCEIROS

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'DocumentoFiscal':
        valores = _campos(cls, dados)
        valores['tipo'] = TipoOperacao.parse(valores['tipo'])
        valores['modelo'] = str(valores.get('modelo', '55'))
        valores['serie'] = str(valores.get('serie', '1'))
        valores['data_emissao'] = _parse_data(valores['data_emissao'])
        valores['data_entrada_saida'] = _parse_data(valores.get('data_entrada_saida'))
        if valores.get('indicador_emitente') is not None:
            valores['indicador_emitente'] = IndicadorEmitente(str(valores['indicador_emitente']))
        valores['itens'] = [ItemDocumento.from_dict(i) for i in dados.get('itens') or []]
        return cls(**valores)


@dataclass(frozen=True)
class ItemInventario:
    """Item do inventário físico (registro H010)."""
    produto_codigo: str
    unidade: str
    quantidade: Numero
    valor_unitario: Numero
    valor_total: Numero
    indicador_propriedade: IndicadorPropriedade = IndicadorPropriedade.PROPRIO_EM_POSSE
    participante_codigo: str = ''
    descricao_complementar: str = ''
    # H020, exigido quando o motivo do inventário não é o final do período
    cst_icms: str = ''
    base_calculo_icms: Numero = 0
    valor_icms: Numero = 0

    @classmethod
    def from_dict(cls, dados: Dict[str, Any]) -> 'ItemInventario':
        valores = _campos(cls, dados)
        if 'indicador_propriedade' in valores:
            valores['indicador_propriedade'] = IndicadorPropriedade(str(valores['indicador_propriedade']))
        return cls(**valores)


@dataclass(frozen=True)
class Inventario:
    """Inventário na data de referência (registros H005/H010)."""
    data: date
    itens: List[ItemInventario]
    motivo: MotivoInventario = MotivoInventario.FINAL_PERIODO


@dataclass
class DadosSped:
    """Coleções já materializadas que alimentam o montador."""
    config: SpedConfig
    participantes: List[Participante] = field(default_factory=list)
    produtos: List[Produto] = field(default_factory=list)
    documentos: List[DocumentoFiscal] = field(default_factory=list)
    unidades: Optional[List[Unidade]] = None
    inventario: Optional[Inventario] = None


# =========================
# PARÂMETROS E RESULTADOS
# =========================

@dataclass
class SpedParams:
    """Parâmetros de uma geração: empresa, período e inventário."""
    empresa_id: str
    data_inicial: date
    data_final: date
    incluir_inventario: bool = False
    data_inventario: Optional[date] = None
    motivo_inventario: MotivoInventario = MotivoInventario.FINAL_PERIODO

    @classmethod
    def do_mes(cls, empresa_id: str, mes: int, ano: int, **kwargs) -> 'SpedParams':
        """Período cobrindo o mês inteiro."""
        if not 1 <= mes <= 12:
            raise SpedValidationError("Mês inválido", campo='mes', valor=str(mes))
        if not 2020 <= ano <= 2100:
            raise SpedValidationError("Ano inválido", campo='ano', valor=str(ano))
        ultimo_dia = calendar.monthrange(ano, mes)[1]
        return cls(
            empresa_id=empresa_id,
            data_inicial=date(ano, mes, 1),
            data_final=date(ano, mes, ultimo_dia),
            **kwargs
        )


@dataclass
class ValidacaoSped:
    """Relatório de validação estrutural."""
    valido: bool
    erros: List[str] = field(default_factory=list)
    avisos: List[str] = field(default_factory=list)
    contagem: Dict[str, int] = field(default_factory=dict)


@dataclass
class SpedResult:
    """Resultado de uma geração. Em caso de falha apenas ``erro`` é preenchido."""
    sucesso: bool
    conteudo: Optional[str] = None
    nome_arquivo: Optional[str] = None
    erro: Optional[str] = None
    validacao: Optional[ValidacaoSped] = None
    metricas: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PeriodoDisponivel:
    mes: int
    ano: int
    tem_dados: bool
    total_notas: int
    valor_total: float
